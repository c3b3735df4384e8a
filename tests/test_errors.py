from errors import (
    SESSION_EXPIRED_MESSAGE, STOCK_SHORTAGE_MESSAGE, ApiError, AuthExpiredError,
    CheckoutValidationError, StockShortageError, describe_error, error_from_response,
    parse_stock_shortage,
)
from models import LineItem

SHORTAGE_TEXT = (
    "Số sản phẩm yêu cầu vượt quá số lượng trong kho. "
    "Số lượng yêu cầu: 5, Số lượng trong kho còn: 2 (ProductUnitId: 17)"
)
LINES = [LineItem(17, "Milk", "box", 5, 10000)]


class TestErrorFromResponse:

    def test_auth_statuses(self):
        for status in (401, 403):
            exc = error_from_response(status, {"message": "Unauthorized"})
            assert isinstance(exc, AuthExpiredError)
            assert describe_error(exc) == SESSION_EXPIRED_MESSAGE

    def test_shortage_from_message_text(self):
        exc = error_from_response(400, {"success": False, "message": SHORTAGE_TEXT})
        assert isinstance(exc, StockShortageError)
        shortage = exc.shortages[0]
        assert (shortage.unit_id, shortage.required_qty, shortage.available_qty) == (17, 5, 2)
        assert shortage.shortfall == 3

    def test_shortage_from_structured_payload(self):
        payload = {"error": {"code": "INSUFFICIENT_STOCK", "requiredQty": 4,
                             "availableQty": 1, "unitId": 17}}
        exc = error_from_response(409, payload)
        assert isinstance(exc, StockShortageError)
        assert exc.shortages[0].required_qty == 4
        assert exc.shortages[0].available_qty == 1

    def test_shortage_marker_without_quantities(self):
        exc = error_from_response(400, {"message": "Sản phẩm đã hết hàng"})
        assert isinstance(exc, StockShortageError)
        assert exc.shortages == []
        assert describe_error(exc).endswith("Sản phẩm đã hết hàng")

    def test_other_errors_stay_generic(self):
        exc = error_from_response(500, "Internal Server Error")
        assert type(exc) is ApiError
        assert exc.status == 500
        assert exc.message == "Internal Server Error"
        assert error_from_response(404, None).message == "HTTP 404"


class TestDescribeError:

    def test_shortage_names_the_cart_line(self):
        exc = error_from_response(400, {"message": SHORTAGE_TEXT})
        text = describe_error(exc, LINES)
        assert text.startswith(STOCK_SHORTAGE_MESSAGE)
        assert '"Milk" has only 2 box in stock' in text
        assert "Requested: 5" in text
        assert "Short by: 3" in text

    def test_shortage_for_unknown_line(self):
        exc = error_from_response(400, {"message": SHORTAGE_TEXT})
        assert "Unit #17" in describe_error(exc, [])

    def test_validation_message_passes_through(self):
        assert describe_error(CheckoutValidationError("Select a customer")) == "Select a customer"

    def test_unclassified_error(self):
        assert describe_error(RuntimeError("socket closed")) == "Connection error: socket closed"

    def test_regex_needs_the_full_grammar(self):
        assert parse_stock_shortage("Số lượng yêu cầu: 5") is None
        assert parse_stock_shortage("") is None
