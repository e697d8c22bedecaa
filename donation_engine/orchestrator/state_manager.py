"""Redis-backed state management for reconciliation runs."""

import json
import os
import threading
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import redis
from donation_engine.constants import JOB_STATE_TTL_SECONDS, JobStatus
from donation_engine.utils.errors import StateManagerError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)

# In-memory state backend for tests and single-process deployments
_in_memory_state: Dict[str, Dict[str, Any]] = {}
_in_memory_lock = threading.Lock()

# "memory" or "redis"
STATE_BACKEND = os.getenv("STATE_BACKEND", "memory")

_redis_client = None
_redis_lock = threading.Lock()


def _key(run_id: str) -> str:
    return f"reconciliation:{run_id}:state"


def get_redis_client() -> Optional["redis.Redis"]:
    """
    Connect to Redis on first use.

    Returns:
        Client, or None if the server is unreachable
    """
    global _redis_client
    with _redis_lock:
        if _redis_client is not None:
            return _redis_client

        redis_host, redis_port = os.getenv("REDIS_HOST", "localhost:6379").split(':')
        try:
            client = redis.Redis(
                host=redis_host,
                port=int(redis_port),
                db=int(os.getenv("REDIS_DB", 0)),
                decode_responses=True,
                socket_keepalive=True,
                socket_connect_timeout=5
            )
            client.ping()
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}", host=redis_host, port=redis_port)
            return None

        logger.info("Connected to Redis", host=redis_host, port=redis_port)
        _redis_client = client
        return _redis_client


def save_job_state(run_id: str, state: Dict[str, Any]) -> None:
    """
    Save run state to Redis or in-memory store.

    Args:
        run_id: Reconciliation run ID
        state: State dictionary to save

    Raises:
        StateManagerError: If the Redis write fails
    """
    if STATE_BACKEND == "memory":
        with _in_memory_lock:
            # Round-trip through JSON so callers never share mutable state
            _in_memory_state[run_id] = json.loads(json.dumps(state, default=str))
        logger.debug("Saved job state (in-memory)", run_id=run_id, status=state.get('status'))
        return

    client = get_redis_client()
    if not client:
        logger.warning("Redis unavailable, state not saved", run_id=run_id)
        return

    try:
        client.setex(_key(run_id), JOB_STATE_TTL_SECONDS, json.dumps(state, default=str))
        logger.debug("Saved job state", run_id=run_id, status=state.get('status'))
    except redis.RedisError as e:
        raise StateManagerError(f"Failed to save job state: {e}")


def restore_job_state(run_id: str) -> Dict[str, Any]:
    """
    Restore run state from Redis or in-memory store.

    Returns:
        State dictionary, or empty dict if not found
    """
    if STATE_BACKEND == "memory":
        with _in_memory_lock:
            return dict(_in_memory_state.get(run_id, {}))

    client = get_redis_client()
    if not client:
        logger.warning("Redis unavailable, returning empty state", run_id=run_id)
        return {}

    try:
        value = client.get(_key(run_id))
    except redis.RedisError as e:
        logger.error(f"Failed to restore job state: {e}", run_id=run_id)
        return {}

    if not value:
        logger.warning(f"No saved state found for {run_id}")
        return {}
    return json.loads(value)


def update_job_state(run_id: str, **fields) -> Dict[str, Any]:
    """Merge fields into the stored state and save it"""
    state = restore_job_state(run_id)
    state.update(fields)
    state['updated_at'] = datetime.now(timezone.utc).isoformat()
    save_job_state(run_id, state)
    return state


def mark_job_complete(run_id: str, summary: Dict[str, Any]) -> None:
    """
    Mark a run as completed and save its final summary.

    Args:
        run_id: Reconciliation run ID
        summary: Final summary data
    """
    update_job_state(
        run_id,
        status=JobStatus.COMPLETED.value,
        summary=summary,
        completed_at=datetime.now(timezone.utc).isoformat()
    )


def check_redis_health() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if Redis is reachable, False otherwise
    """
    client = get_redis_client()
    if not client:
        return False

    try:
        return bool(client.ping())
    except redis.RedisError:
        return False
