import pytest

from justocr.credentials import CredentialMode, ResolvedCredentials
from justocr.exceptions import ProviderError, UnknownProvider
from justocr.runner import iter_provider_progress, run_provider

from helpers import FakeBatchProvider, FakeProvider, make_pages


class TestRunProvider:
    async def test_unknown_provider(self, pages) -> None:
        with pytest.raises(UnknownProvider, match="Unknown provider"):
            await run_provider("", pages)
        with pytest.raises(UnknownProvider):
            await run_provider("does-not-exist", pages)

    async def test_pages_recognized_in_order(self, register_fake) -> None:
        provider = register_fake("ordered", DISPLAY_NAME="Ordered")
        result = await run_provider("ordered", make_pages(3))

        assert provider.calls == [1, 2, 3]
        assert [p.page_number for p in result.pages] == [1, 2, 3]
        assert result.full_text == "Ordered page 1\n\nOrdered page 2\n\nOrdered page 3"
        assert result.provider_label == "Ordered"
        assert result.processing_time_ms >= 0

    async def test_batch_provider_called_once(self, register_fake) -> None:
        provider = register_fake("batched", base=FakeBatchProvider)
        result = await run_provider("batched", make_pages(4))

        assert provider.batch_calls == 1
        assert provider.calls == []
        assert result.full_text == "batch 1\n\nbatch 2\n\nbatch 3\n\nbatch 4"

    async def test_failure_aborts_whole_run(self, register_fake) -> None:
        provider = register_fake("flaky", fail_on_page=2)
        with pytest.raises(ProviderError, match="Fake engine failed"):
            await run_provider("flaky", make_pages(3))

        assert provider.calls == [1, 2]
        assert provider.closed_runs == provider.open_runs == 1

    async def test_unexpected_error_becomes_provider_error(self, register_fake) -> None:
        class Crashing(FakeProvider):
            async def recognize(self, page, run):
                raise RuntimeError("segfault in engine")

        register_fake("crashing", base=Crashing)
        with pytest.raises(ProviderError, match="segfault in engine"):
            await run_provider("crashing", make_pages(1))

    async def test_user_key_reaches_adapter(self, register_fake, pages) -> None:
        provider = register_fake("keyed", ACCEPTS_USER_CREDENTIALS=True)
        await run_provider("keyed", pages, ResolvedCredentials(CredentialMode.USER_SUPPLIED, "user-key"))
        assert provider.api_keys == ["user-key"]

    async def test_wrong_page_count_from_batch_is_an_error(self, register_fake) -> None:
        class Short(FakeBatchProvider):
            async def recognize_all(self, pages, run):
                return ["only one"]

        register_fake("short", base=Short)
        with pytest.raises(ProviderError):
            await run_provider("short", make_pages(2))


class TestProgressEvents:
    async def test_events_end_with_result(self, register_fake) -> None:
        register_fake("progress")
        events = [event async for event in iter_provider_progress("progress", make_pages(2))]

        statuses = [event.status for event in events]
        assert statuses[0] == "loading"
        assert statuses[-1] == "complete"
        assert statuses.count("recognizing") == 2
        assert events[-1].progress == 100
        assert events[-1].result.page_count == 2
        assert all(a.progress <= b.progress for a, b in zip(events, events[1:]))

    async def test_error_event_then_raise(self, register_fake) -> None:
        register_fake("progress-fail", fail_on_page=1)
        events = []
        with pytest.raises(ProviderError):
            async for event in iter_provider_progress("progress-fail", make_pages(2)):
                events.append(event)

        assert events[-1].status == "error"
        assert events[-1].message == "Fake engine failed"
        assert events[-1].result is None
