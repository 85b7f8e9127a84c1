"""Tests for the compression gateway."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from conversation_state.compression.gateway import CompressionGateway, exceeds_threshold
from conversation_state.config import CompressionConfig
from conversation_state.errors import CompressionError
from conversation_state.models import TokenUsage, dump_items, parse_items
from tests.mocks.compression import FakeCompressionService
from tests.mocks.items import message

if TYPE_CHECKING:
    from collections.abc import Sequence

    from conversation_state.models import Item


@pytest.fixture
def config() -> CompressionConfig:
    """Enabled compression with the default threshold and ratio."""
    return CompressionConfig(enabled=True, threshold=0.7, max_compression_ratio=0.3)


@pytest.fixture
def messages() -> list[Item]:
    """Ten user messages."""
    return parse_items([message(f"m{i}") for i in range(10)])


class _DictService(FakeCompressionService):
    """Returns plain dicts, like an out-of-process service would."""

    def __init__(self, payload: dict[str, Any] | None = None) -> None:
        super().__init__()
        self.payload = payload

    async def compress_conversation(self, messages: Sequence[Item], strategy: str) -> Any:
        if self.payload is not None:
            return self.payload
        return {
            "compressed_messages": dump_items(messages[-1:]),
            "compression_ratio": 1 / len(messages),
        }


def test_rejects_non_positive_budget() -> None:
    """A zero budget would divide by zero in the policy."""
    with pytest.raises(ValueError, match="max_tokens must be > 0"):
        CompressionGateway(FakeCompressionService(), max_tokens=0)


@pytest.mark.parametrize(
    ("total", "enabled", "expected"),
    [
        (6999, True, False),
        (7000, True, True),
        (9000, True, True),
        (9000, False, False),
    ],
)
def test_should_compress(total: int, enabled: bool, expected: bool) -> None:
    """Compression triggers at total / max_tokens >= threshold when enabled."""
    gateway = CompressionGateway(FakeCompressionService(), max_tokens=10000)
    config = CompressionConfig(enabled=enabled, threshold=0.7)
    assert gateway.should_compress(TokenUsage(total=total), config) is expected
    assert exceeds_threshold(TokenUsage(total=total), config, 10000) is expected


@pytest.mark.asyncio
async def test_compress_success(config: CompressionConfig, messages: list[Item]) -> None:
    """A well-formed result passes through unchanged."""
    service = FakeCompressionService(keep=2)
    gateway = CompressionGateway(service, max_tokens=1000)

    result = await gateway.compress(messages, "truncate", config)

    assert [m.text() for m in result.compressed_messages] == ["m8", "m9"]
    assert result.compression_ratio == pytest.approx(0.2)
    assert service.compress_calls == [(10, "truncate")]


@pytest.mark.asyncio
async def test_service_exception_becomes_compression_error(
    config: CompressionConfig,
    messages: list[Item],
) -> None:
    """Any service failure surfaces as CompressionError with the cause attached."""
    service = FakeCompressionService(fail_with=RuntimeError("backend down"))
    gateway = CompressionGateway(service, max_tokens=1000)

    with pytest.raises(CompressionError, match="backend down") as exc_info:
        await gateway.compress(messages, "summarize", config)
    assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_compression_error_passes_through(
    config: CompressionConfig,
    messages: list[Item],
) -> None:
    """A CompressionError raised by the service is not wrapped again."""
    original = CompressionError("too short")
    gateway = CompressionGateway(FakeCompressionService(fail_with=original), max_tokens=1000)

    with pytest.raises(CompressionError) as exc_info:
        await gateway.compress(messages, "summarize", config)
    assert exc_info.value is original


@pytest.mark.asyncio
@pytest.mark.parametrize("ratio", [0.0, -0.5, 0.31, 1.0])
async def test_out_of_range_ratio_rejected(
    ratio: float,
    config: CompressionConfig,
    messages: list[Item],
) -> None:
    """Ratios outside (0, max_compression_ratio] are service errors."""
    gateway = CompressionGateway(FakeCompressionService(ratio=ratio), max_tokens=1000)
    with pytest.raises(CompressionError, match="outside"):
        await gateway.compress(messages, "truncate", config)


@pytest.mark.asyncio
async def test_growing_result_rejected(config: CompressionConfig, messages: list[Item]) -> None:
    """A result with more messages than the input is refused."""
    payload = {
        "compressed_messages": dump_items([*messages, *messages]),
        "compression_ratio": 0.1,
    }
    gateway = CompressionGateway(_DictService(payload), max_tokens=1000)
    with pytest.raises(CompressionError, match="grew the conversation"):
        await gateway.compress(messages, "truncate", config)


@pytest.mark.asyncio
async def test_dict_result_is_validated(config: CompressionConfig, messages: list[Item]) -> None:
    """Plain dict results are converted to CompressionResult."""
    gateway = CompressionGateway(_DictService(), max_tokens=1000)
    result = await gateway.compress(messages, "truncate", config)
    assert len(result.compressed_messages) == 1
    assert result.compressed_messages[0].text() == "m9"


@pytest.mark.asyncio
async def test_malformed_result_rejected(config: CompressionConfig, messages: list[Item]) -> None:
    """A result missing required fields is a service error."""
    gateway = CompressionGateway(_DictService({"compressed": []}), max_tokens=1000)
    with pytest.raises(CompressionError, match="malformed"):
        await gateway.compress(messages, "truncate", config)


@pytest.mark.asyncio
async def test_split_point_support_and_close() -> None:
    """Optional service capabilities are detected."""
    service = FakeCompressionService()
    gateway = CompressionGateway(service, max_tokens=1000)
    assert not gateway.supports_split_point()

    await gateway.aclose()
    assert service.closed
