"""JSON log lines emitted under the ``audit_chain`` logger."""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from audit_chain.domain.verification import BlockOutcome
from audit_chain.exceptions import ChainForkError, ProofOfWorkCapExceededError
from audit_chain.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def emitted():
    """Configure logging into a buffer; calling the fixture returns parsed lines."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)

    def read():
        return [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    read.install = lambda level=logging.INFO: configure_logging(handler=handler, level=level)
    return read


class TestLineFormat:
    def test_envelope(self, emitted):
        emitted.install()
        get_logger("services.audit_appender").info("audit_block_created")

        (line,) = emitted()
        assert line["message"] == "audit_block_created"
        assert line["logger"] == "audit_chain.services.audit_appender"
        assert line["level"] == "INFO"
        assert line["ts"].endswith("+00:00")

    def test_extra_values_become_fields(self, emitted):
        emitted.install()
        get_logger("services.chain_verifier").info(
            "verification_completed",
            extra={
                "verified_blocks": 5,
                "tampered_blocks": 0,
                "elapsed": Decimal("1.50"),
                "outcomes": {BlockOutcome.VERIFIED},
            },
        )

        (line,) = emitted()
        assert line["verified_blocks"] == 5
        assert line["tampered_blocks"] == 0
        assert line["elapsed"] == "1.50"
        assert line["outcomes"] == ["VERIFIED"]

    def test_context_wins_over_extra(self, emitted):
        emitted.install()
        with LogContext.bind(audit_id="TRANSACTION-3-0a1b2c3d"):
            get_logger("x").info("evt", extra={"audit_id": "ignored", "block_number": 3})

        (line,) = emitted()
        assert line["audit_id"] == "TRANSACTION-3-0a1b2c3d"
        assert line["block_number"] == 3

    def test_plain_exception(self, emitted):
        emitted.install()
        try:
            {}["missing"]
        except KeyError:
            get_logger("x").error("lookup_failed", exc_info=True)

        (line,) = emitted()
        assert line["exc_type"] == "KeyError"
        assert "exc_code" not in line
        assert "Traceback" in line["traceback"]

    def test_chain_error_attributes_are_flattened(self, emitted):
        emitted.install()
        try:
            raise ChainForkError(7, "ab" * 32)
        except ChainForkError:
            get_logger("x").error("append_failed", exc_info=True)

        (line,) = emitted()
        assert line["exc_code"] == "CHAIN_FORK"
        assert line["exc_block_number"] == 7
        assert line["exc_previous_hash"] == "ab" * 32

    def test_pow_cap_error_carries_difficulty(self, emitted):
        emitted.install()
        exc = ProofOfWorkCapExceededError(block_number=4, difficulty=12, attempts=5)
        get_logger("x").warning("sealing_failed", exc_info=(type(exc), exc, None))

        (line,) = emitted()
        assert line["exc_code"] == "POW_CAP_EXCEEDED"
        assert line["exc_difficulty"] == 12


class TestLogContext:
    def test_set_merges_and_skips_none(self):
        LogContext.set(producer="wallet-service")
        LogContext.set(correlation_id="req-1", producer=None)

        assert LogContext.get_all() == {"producer": "wallet-service", "correlation_id": "req-1"}

    def test_bind_is_scoped(self):
        LogContext.set(verification_id="outer")
        with LogContext.bind(verification_id="inner", trace_id="t-9"):
            assert LogContext.get_all() == {"verification_id": "inner", "trace_id": "t-9"}
        assert LogContext.get_all() == {"verification_id": "outer"}

    def test_unknown_name_is_a_type_error(self):
        with pytest.raises(TypeError, match="block_number"):
            LogContext.set(block_number="1")
        with pytest.raises(TypeError):
            with LogContext.bind(entity="WALLET"):
                pass

    def test_empty_context_adds_nothing(self, emitted):
        emitted.install()
        get_logger("x").info("bare")

        (line,) = emitted()
        assert set(line) == {"ts", "level", "logger", "message"}


class TestConfigureLogging:
    def test_first_call_wins(self, emitted):
        emitted.install(level=logging.WARNING)
        configure_logging(handler=logging.StreamHandler(StringIO()), level=logging.DEBUG)

        package_logger = logging.getLogger("audit_chain")
        assert len(package_logger.handlers) == 1
        assert package_logger.level == logging.WARNING
        assert isinstance(package_logger.handlers[0].formatter, StructuredFormatter)

    def test_level_name_accepted(self, emitted):
        emitted.install(level="error")
        get_logger("x").warning("dropped")
        get_logger("x").error("kept")

        assert [line["message"] for line in emitted()] == ["kept"]

    def test_does_not_reach_root_logger(self, emitted):
        emitted.install()
        assert logging.getLogger("audit_chain").propagate is False

    def test_reset_detaches_handler(self, emitted):
        emitted.install()
        reset_logging()
        assert logging.getLogger("audit_chain").handlers == []
