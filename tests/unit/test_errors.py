"""Tests for error classification and ErrorResponse conversion."""

import pytest

from scf_runtime.errors import (
    DecodeError,
    HandlerCancelledError,
    HandlerError,
    InitializationError,
    InvocationTimeoutError,
    PollError,
    PollErrorKind,
    ReportError,
    ReportErrorKind,
    classify,
    describe_exception,
    error_response_from_exception,
)


class Unprintable(Exception):
    def __str__(self):
        raise RuntimeError("cannot render")


class TestStatusMapping:
    """HTTP status to error kind mapping."""

    @pytest.mark.parametrize(
        "status,kind",
        [
            (400, PollErrorKind.BAD_REQUEST),
            (429, PollErrorKind.TOO_MANY_REQUESTS),
            (500, PollErrorKind.INTERNAL_SERVER_ERROR),
            (503, PollErrorKind.UNEXPECTED_STATUS),
        ],
    )
    def test_poll_status(self, status, kind):
        error = PollError.from_status(status)

        assert error.kind is kind
        assert error.status == status
        assert not error.is_transport_failure

    @pytest.mark.parametrize(
        "status,kind",
        [
            (299, ReportErrorKind.INVALID_ERROR_SHAPE),
            (400, ReportErrorKind.BAD_REQUEST),
            (413, ReportErrorKind.PAYLOAD_TOO_LARGE),
            (429, ReportErrorKind.TOO_MANY_REQUESTS),
            (500, ReportErrorKind.INTERNAL_SERVER_ERROR),
            (404, ReportErrorKind.UNEXPECTED_STATUS),
        ],
    )
    def test_report_status(self, status, kind):
        assert ReportError.from_status(status).kind is kind

    def test_client_error_detection(self):
        assert PollError.from_status(429).is_client_error
        assert not PollError.from_status(500).is_client_error
        assert not PollError(PollErrorKind.TRANSPORT_FAILURE, "reset").is_client_error


class TestClassification:
    """errorType derivation."""

    def test_plain_exception_uses_class_name(self):
        assert classify(ValueError("boom")) == "ValueError"

    def test_handler_error_types(self):
        assert classify(DecodeError("bad")) == "DecodeError"
        assert classify(InvocationTimeoutError("abc", 10)) == "Timeout"

    def test_handler_error_subclass_without_explicit_type(self):
        class PaymentDeclined(HandlerError):
            pass

        assert classify(PaymentDeclined("no funds")) == "PaymentDeclined"

    def test_initialization_error_classified_by_cause(self):
        assert classify(InitializationError(KeyError("config"))) == "KeyError"


class TestErrorResponseFromException:
    """Conversion of exceptions to the wire envelope."""

    def test_raised_exception_carries_stack_trace(self):
        try:
            raise ValueError("boom")
        except ValueError as e:
            response = error_response_from_exception(e)

        assert response.error_type == "ValueError"
        assert response.error_message == "boom"
        assert response.stack_trace
        assert response.stack_trace[0].startswith("Traceback")
        assert "ValueError: boom" in response.stack_trace[-1]

    def test_unraised_exception_has_no_stack_trace(self):
        response = error_response_from_exception(RuntimeError("never raised"))

        assert response.stack_trace is None

    def test_stack_trace_can_be_suppressed(self):
        try:
            raise ValueError("boom")
        except ValueError as e:
            response = error_response_from_exception(e, include_stack_trace=False)

        assert response.stack_trace is None

    def test_empty_message_falls_back_to_type_name(self):
        response = error_response_from_exception(KeyboardInterrupt())

        assert response.error_message == "KeyboardInterrupt"

    def test_initialization_error_reports_cause(self):
        try:
            raise ImportError("No module named 'index'")
        except ImportError as e:
            response = error_response_from_exception(InitializationError(e))

        assert response.error_type == "ImportError"
        assert response.error_message == "No module named 'index'"
        assert response.stack_trace

    def test_unprintable_exception_still_converts(self):
        try:
            raise Unprintable("hidden")
        except Unprintable as e:
            response = error_response_from_exception(e)

        assert response.error_type == "Unprintable"
        assert response.error_message == "Unprintable('hidden')"
        assert response.stack_trace

    def test_cancelled_handler_classification(self):
        response = error_response_from_exception(HandlerCancelledError("abc-123"))

        assert response.error_type == "Cancelled"
        assert "abc-123" in response.error_message


class TestDescribeException:
    def test_uses_message(self):
        assert describe_exception(ValueError("boom")) == "boom"

    def test_empty_message_is_type_name(self):
        assert describe_exception(ValueError()) == "ValueError"

    def test_falls_back_to_repr_when_str_raises(self):
        assert describe_exception(Unprintable("x")) == "Unprintable('x')"

    def test_falls_back_to_type_name_when_repr_raises(self):
        class Opaque(Unprintable):
            def __repr__(self):
                raise RuntimeError("no repr either")

        assert describe_exception(Opaque()) == "Opaque"
