from errors import PartialBatchError
from logging_config import get_logger

logger = get_logger(__name__)


def validate_results(results: list) -> list:
    """Check the per-command results of a pipeline executed with raise_on_error=False.

    redis-py puts the exception object in the slot of every failed command.
    All of them are combined into one PartialBatchError; commands before
    (and after) a failed one may already have been applied.
    """
    errors = [result for result in results if isinstance(result, Exception)]
    if errors:
        logger.error(f"{len(errors)} of {len(results)} pipeline commands failed: {errors}")
        raise PartialBatchError(errors)
    return results
