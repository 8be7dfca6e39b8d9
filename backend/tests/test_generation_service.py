"""Generation orchestrator tests.

Tests cover the job lifecycle end to end against the test database:
- submit charges once and returns while the backend is still running
- exactly one terminal write per job, with a refund on failure
- stale processing jobs read as failed and are expired by the sweep
- re-hosting and its fallback to the backend URL
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from headshot.core.timezone import utcnow
from headshot.models.credit_transaction import CreditTransaction, CreditTransactionType
from headshot.models.generation_job import GenerationJob, GenerationStatus
from headshot.services.exceptions import (
    GenerationError,
    InsufficientCreditsError,
    InvalidStyleError,
    JobNotFoundError,
    ProviderNotConfiguredError,
    StorageError,
    ValidationError,
)
from headshot.services.generation import UNEXPECTED_ERROR, GenerationService
from headshot.services.providers.base import STALE_JOB_ERROR, GenerationType

USER = "user_gen"
STYLE = "business-suit"
SOURCE_IMAGE = "https://photos.test/me.jpg"


@pytest_asyncio.fixture
async def make_service(uow_factory, ledger, settings, fake_provider):
    """Build a GenerationService around a FakeProvider; drains detached jobs at teardown."""
    services: list[GenerationService] = []

    def _make(outcome="https://cdn.fake/out.png", storage=None, **settings_overrides):
        service_settings = settings.model_copy(update=settings_overrides)
        provider = fake_provider(outcome=outcome)
        provider.settings = service_settings
        service = GenerationService(
            uow_factory=uow_factory,
            provider=provider,
            ledger=ledger,
            settings=service_settings,
            storage=storage,
        )
        services.append(service)
        return service

    yield _make

    for service in services:
        if service.provider.gate is not None:
            service.provider.gate.set()
        await service.shutdown()


async def _balance(uow_factory, ledger, user_id=USER):
    async with await uow_factory() as uow:
        return await ledger.get_balance(uow, user_id)


async def _job(uow_factory, job_id) -> GenerationJob:
    async with await uow_factory() as uow:
        return await uow.generation_jobs.get_by_id(job_id)


async def _insert_job(uow_factory, job_id, created_at, user_id=USER):
    async with await uow_factory() as uow:
        await uow.generation_jobs.add(
            GenerationJob(
                id=job_id,
                user_id=user_id,
                provider="fake",
                prompt="prompt",
                style_id=STYLE,
                created_at=created_at,
            )
        )


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_returns_processing_then_completes(
        self, make_service, funded_user, uow_factory, ledger
    ):
        """The request path returns while the backend is still running.

        1. Submit with the backend blocked: job is processing, 1 credit spent
        2. Release the backend: job completes with the backend URL
        """
        await funded_user(USER, 2)
        service = make_service()
        service.provider.gate = asyncio.Event()

        job = await service.submit_generation(USER, STYLE)

        assert job.status == GenerationStatus.PROCESSING
        assert job.id.startswith("fake_text-to-image_")
        status = await service.query_generation_status(job.id)
        assert status.status == GenerationStatus.PROCESSING
        assert (await _balance(uow_factory, ledger)).balance == 1

        service.provider.gate.set()
        await service.drain()

        status = await service.query_generation_status(job.id)
        assert status.status == GenerationStatus.COMPLETED
        assert status.image_url == "https://cdn.fake/out.png"
        assert (await _balance(uow_factory, ledger)).balance == 1

    @pytest.mark.asyncio
    async def test_stored_job_and_backend_share_job_id(self, make_service, funded_user):
        await funded_user(USER, 1)
        service = make_service()

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        called_job_id, generate_input, _ = service.provider.calls[0]
        assert called_job_id == job.id
        assert generate_input.user_id == USER
        assert generate_input.style_id == STYLE

    @pytest.mark.asyncio
    async def test_charge_is_linked_to_job(self, make_service, funded_user, uow_factory, ledger):
        await funded_user(USER, 1)
        service = make_service()

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        async with await uow_factory() as uow:
            history = await ledger.get_history(uow, USER)
        spend = [tx for tx in history if tx.type == CreditTransactionType.GENERATION_SPENT]
        assert len(spend) == 1
        assert spend[0].amount == -1
        assert spend[0].reference_id == f"generation_{job.id}"

    @pytest.mark.asyncio
    async def test_image_to_image_when_source_given(self, make_service, funded_user, uow_factory):
        await funded_user(USER, 1)
        service = make_service()

        job = await service.submit_generation(USER, STYLE, input_image_url=SOURCE_IMAGE)
        await service.drain()

        assert job.id.startswith("fake_image-to-image_")
        _, generate_input, generation_type = service.provider.calls[0]
        assert generation_type == GenerationType.IMAGE_TO_IMAGE
        assert generate_input.input_image_url == SOURCE_IMAGE
        assert (await _job(uow_factory, job.id)).input_image_url == SOURCE_IMAGE

    @pytest.mark.asyncio
    async def test_insufficient_credits_creates_no_job(self, make_service, uow_factory):
        service = make_service()

        with pytest.raises(InsufficientCreditsError):
            await service.submit_generation(USER, STYLE)

        jobs, total = await service.list_generations(USER)
        assert (jobs, total) == ([], 0)
        assert service.provider.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_submits_with_one_credit(self, make_service, funded_user):
        """Two concurrent submissions against balance 1: one job, one rejection."""
        await funded_user(USER, 1)
        service = make_service()

        results = await asyncio.gather(
            service.submit_generation(USER, STYLE),
            service.submit_generation(USER, STYLE),
            return_exceptions=True,
        )
        await service.drain()

        assert sum(isinstance(r, GenerationJob) for r in results) == 1
        assert sum(isinstance(r, InsufficientCreditsError) for r in results) == 1
        _, total = await service.list_generations(USER)
        assert total == 1

    @pytest.mark.asyncio
    async def test_invalid_style(self, make_service, funded_user, uow_factory, ledger):
        await funded_user(USER, 1)
        service = make_service()

        with pytest.raises(InvalidStyleError, match="Invalid style ID: nope"):
            await service.submit_generation(USER, "nope")

        assert (await _balance(uow_factory, ledger)).balance == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["not a url", "ftp://photos.test/me.jpg", "https://"])
    async def test_invalid_image_url(self, make_service, funded_user, url):
        await funded_user(USER, 1)
        service = make_service()

        with pytest.raises(ValidationError):
            await service.submit_generation(USER, STYLE, input_image_url=url)

    @pytest.mark.asyncio
    async def test_provider_not_configured(self, make_service, funded_user, uow_factory, ledger):
        await funded_user(USER, 1)
        service = make_service()
        service.provider.configured = False

        with pytest.raises(ProviderNotConfiguredError):
            await service.submit_generation(USER, STYLE)

        assert (await _balance(uow_factory, ledger)).balance == 1


class TestFailure:
    @pytest.mark.asyncio
    async def test_backend_error_fails_job_and_refunds(
        self, make_service, funded_user, uow_factory, ledger
    ):
        await funded_user(USER, 1)
        service = make_service(outcome=GenerationError("Rate limit exceeded: slow down"))

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        status = await service.query_generation_status(job.id)
        assert status.status == GenerationStatus.FAILED
        assert status.error == "Rate limit exceeded: slow down"

        balance = await _balance(uow_factory, ledger)
        assert (balance.balance, balance.total_earned, balance.total_spent) == (1, 2, 1)
        async with await uow_factory() as uow:
            history = await ledger.get_history(uow, USER)
        refunds = [tx for tx in history if tx.type == CreditTransactionType.GENERATION_REFUND]
        assert len(refunds) == 1
        assert refunds[0].reference_id == f"refund_{job.id}"

    @pytest.mark.asyncio
    async def test_no_refund_when_disabled(self, make_service, funded_user, uow_factory, ledger):
        await funded_user(USER, 1)
        service = make_service(outcome=GenerationError("boom"), refund_on_failure=False)

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        assert (await service.query_generation_status(job.id)).status == GenerationStatus.FAILED
        assert (await _balance(uow_factory, ledger)).balance == 0

    @pytest.mark.asyncio
    async def test_unexpected_exception_uses_generic_message(self, make_service, funded_user):
        await funded_user(USER, 1)
        service = make_service(outcome=RuntimeError("secret internals"))

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        status = await service.query_generation_status(job.id)
        assert status.status == GenerationStatus.FAILED
        assert status.error == UNEXPECTED_ERROR

    @pytest.mark.asyncio
    async def test_empty_payload_fails_job(self, make_service, funded_user):
        await funded_user(USER, 1)
        service = make_service(outcome=None)

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        status = await service.query_generation_status(job.id)
        assert status.status == GenerationStatus.FAILED
        assert status.error == "No image data in response"

    @pytest.mark.asyncio
    async def test_backend_timeout_fails_job(self, make_service, funded_user, uow_factory, ledger):
        await funded_user(USER, 1)
        service = make_service()
        service.provider.delay = 1.0
        service.provider.timeout = 0.05

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        status = await service.query_generation_status(job.id)
        assert status.status == GenerationStatus.FAILED
        assert "timed out" in status.error
        assert (await _balance(uow_factory, ledger)).balance == 1


class TestTerminalWrites:
    @pytest.mark.asyncio
    async def test_second_terminal_write_is_noop(
        self, make_service, funded_user, uow_factory, ledger
    ):
        """A late failure after completion changes nothing and refunds nothing."""
        await funded_user(USER, 1)
        service = make_service()

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        assert await service.record_failed(job.id, "late failure") is False
        assert await service.record_completed(job.id, "https://cdn.fake/other.png") is False

        stored = await _job(uow_factory, job.id)
        assert stored.status == GenerationStatus.COMPLETED
        assert stored.output_image_url == "https://cdn.fake/out.png"
        assert (await _balance(uow_factory, ledger)).balance == 0

    @pytest.mark.asyncio
    async def test_refund_happens_once(self, make_service, funded_user, uow_factory, ledger):
        await funded_user(USER, 1)
        service = make_service()
        service.provider.gate = asyncio.Event()

        job = await service.submit_generation(USER, STYLE)
        assert await service.record_failed(job.id, "first") is True
        assert await service.record_failed(job.id, "second") is False

        # The backend finishing afterwards cannot complete the failed job
        service.provider.gate.set()
        await service.drain()

        stored = await _job(uow_factory, job.id)
        assert stored.status == GenerationStatus.FAILED
        assert stored.error == "first"
        assert (await _balance(uow_factory, ledger)).balance == 1

    @pytest.mark.asyncio
    async def test_failing_unknown_job_is_noop(self, make_service, uow_factory):
        service = make_service()

        assert await service.record_failed("missing_job", "boom") is False

        async with await uow_factory() as uow:
            refunds = await uow.session.scalar(
                select(func.count()).select_from(CreditTransaction)
            )
        assert refunds == 0


class TestStatusQueries:
    @pytest.mark.asyncio
    async def test_unknown_job_reads_pending(self, make_service):
        result = await make_service().query_generation_status("missing")

        assert result.status == GenerationStatus.PENDING
        assert result.image_url is None
        assert result.error is None

    @pytest.mark.asyncio
    async def test_other_users_job_reads_pending(self, make_service, funded_user):
        await funded_user(USER, 1)
        service = make_service()
        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        result = await service.query_generation_status(job.id, user_id="someone_else")
        assert result.status == GenerationStatus.PENDING

        result = await service.query_generation_status(job.id, user_id=USER)
        assert result.status == GenerationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stale_job_reads_failed_and_is_expired(self, make_service, uow_factory, ledger):
        service = make_service(stale_job_timeout_seconds=60)
        await _insert_job(uow_factory, "stale_job", utcnow() - timedelta(minutes=5))
        await _insert_job(uow_factory, "fresh_job", utcnow())

        result = await service.query_generation_status("stale_job")
        assert result.status == GenerationStatus.FAILED
        assert result.error == STALE_JOB_ERROR
        assert (await service.query_generation_status("fresh_job")).status == (
            GenerationStatus.PROCESSING
        )

        assert await service.expire_stale_jobs() == 1
        assert await service.expire_stale_jobs() == 0

        stored = await _job(uow_factory, "stale_job")
        assert stored.status == GenerationStatus.FAILED
        assert stored.error == STALE_JOB_ERROR
        assert (await _balance(uow_factory, ledger)).balance == 1

    @pytest.mark.asyncio
    async def test_list_generations(self, make_service, funded_user):
        await funded_user(USER, 3)
        service = make_service()
        for _ in range(3):
            await service.submit_generation(USER, STYLE)
        await service.drain()

        jobs, total = await service.list_generations(USER, limit=2)
        assert total == 3
        assert len(jobs) == 2


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, make_service):
        with pytest.raises(JobNotFoundError):
            await make_service().cancel_generation(USER, "missing")

    @pytest.mark.asyncio
    async def test_cancel_other_users_job(self, make_service, funded_user):
        await funded_user(USER, 1)
        service = make_service()
        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        with pytest.raises(JobNotFoundError):
            await service.cancel_generation("someone_else", job.id)

    @pytest.mark.asyncio
    async def test_cancel_does_not_interrupt_job(self, make_service, funded_user):
        await funded_user(USER, 1)
        service = make_service()
        service.provider.gate = asyncio.Event()
        job = await service.submit_generation(USER, STYLE)

        assert await service.cancel_generation(USER, job.id) is True

        service.provider.gate.set()
        await service.drain()
        status = await service.query_generation_status(job.id)
        assert status.status == GenerationStatus.COMPLETED


class TestRehost:
    def _storage(self, upload=None, side_effect=None, hosted=False):
        storage = MagicMock()
        storage.is_configured.return_value = True
        storage.is_hosted.return_value = hosted
        storage.upload_from_url = AsyncMock(return_value=upload, side_effect=side_effect)
        return storage

    @pytest.mark.asyncio
    async def test_output_is_rehosted(self, make_service, funded_user):
        await funded_user(USER, 1)
        storage = self._storage(upload="https://images.headshot.test/generated/x.jpg")
        service = make_service(storage=storage)

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        status = await service.query_generation_status(job.id)
        assert status.image_url == "https://images.headshot.test/generated/x.jpg"
        source_url, key, content_type = storage.upload_from_url.call_args.args
        assert source_url == "https://cdn.fake/out.png"
        assert key.startswith(f"generated/{job.id}/")
        assert key.endswith(".jpg")
        assert content_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_rehost_failure_keeps_backend_url(self, make_service, funded_user):
        await funded_user(USER, 1)
        storage = self._storage(side_effect=StorageError("bucket unavailable"))
        service = make_service(storage=storage)

        job = await service.submit_generation(USER, STYLE)
        await service.drain()

        status = await service.query_generation_status(job.id)
        assert status.status == GenerationStatus.COMPLETED
        assert status.image_url == "https://cdn.fake/out.png"

    @pytest.mark.asyncio
    async def test_already_hosted_output_is_not_uploaded(self, make_service, funded_user):
        await funded_user(USER, 1)
        storage = self._storage(hosted=True)
        service = make_service(storage=storage)

        await service.submit_generation(USER, STYLE)
        await service.drain()

        storage.upload_from_url.assert_not_called()
