import logging
from typing import Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_result, stop_after_attempt, wait_fixed

from paheflow.configs import settings
from paheflow.extractors.base import RetryExhausted
from paheflow.schemas import RetryState
from paheflow.utils.http_utils import FetchResponse

logger = logging.getLogger(__name__)


async def poll_until_status(
    poll: Callable[[], Awaitable[FetchResponse]],
    target_status: int,
    loop: str,
    max_attempts: Optional[int] = None,
    wait: Optional[float] = None,
) -> FetchResponse:
    """
    Call ``poll`` until it answers with ``target_status``.

    Any other status means "try again", up to ``max_attempts`` polls at a fixed
    rate. Exceptions raised by ``poll`` are not retried and propagate as is.

    Raises:
        RetryExhausted: when every poll missed the target status.
    """
    state = RetryState(max_attempts=max_attempts or settings.max_attempts, target_status=target_status)

    async def attempt() -> FetchResponse:
        state.attempt += 1
        response = await poll()
        state.last_status = response.status
        return response

    def log_retry(retry_state: RetryCallState) -> None:
        logger.debug(
            "%s poll %d/%d got status %s, want %s",
            loop,
            retry_state.attempt_number,
            state.max_attempts,
            state.last_status,
            target_status,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(state.max_attempts),
        wait=wait_fixed(settings.retry_wait if wait is None else wait),
        retry=retry_if_result(lambda response: response.status != target_status),
        before_sleep=log_retry,
    )
    try:
        return await retrying(attempt)
    except RetryError as e:
        logger.error("%s loop gave up after %d polls (last status %s)", loop, state.attempt, state.last_status)
        raise RetryExhausted(
            f"Failed to bypass {loop}: no {target_status} after {state.attempt} attempts", loop=loop, state=state
        ) from e
