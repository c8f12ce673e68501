"""
Atomic Redis operations for the message tracker

Provides Lua scripts so that every status transition is a single
check-and-set: a row only moves when its current status is one the caller
expects, which keeps the scheduler, the cancellation engine and the
dispatch workers from overwriting each other's transitions.
"""
import logging
from typing import Any, Dict, Iterable, Optional

import redis

logger = logging.getLogger("redis-atomic")

# Lua script for a conditional status transition
#
# KEYS[1] message hash, KEYS[2] active index
# ARGV[1] comma-separated allowed current statuses
# ARGV[2] new status, ARGV[3] updated_at, ARGV[4] message id
# ARGV[5] error, ARGV[6] sent_at, ARGV[7] job handle, ARGV[8] attempt
# Empty optional arguments leave the field untouched.
CONDITIONAL_TRANSITION_SCRIPT = """
local current_status = redis.call('HGET', KEYS[1], 'status')
if not current_status then
    return -1
end

local allowed = false
for status in string.gmatch(ARGV[1], '[^,]+') do
    if status == current_status then
        allowed = true
        break
    end
end
if not allowed then
    return 0
end

redis.call('HSET', KEYS[1], 'status', ARGV[2], 'updated_at', ARGV[3])
if ARGV[5] ~= '' then
    redis.call('HSET', KEYS[1], 'error', ARGV[5])
end
if ARGV[6] ~= '' then
    redis.call('HSET', KEYS[1], 'sent_at', ARGV[6])
end
if ARGV[7] ~= '' then
    redis.call('HSET', KEYS[1], 'job_handle', ARGV[7])
end
if ARGV[8] ~= '' then
    redis.call('HSET', KEYS[1], 'attempt', ARGV[8])
end

-- Keep the active index in step with PENDING/QUEUED membership
if ARGV[2] == 'PENDING' or ARGV[2] == 'QUEUED' then
    local score = redis.call('HGET', KEYS[1], 'scheduled_ts')
    redis.call('ZADD', KEYS[2], score, ARGV[4])
else
    redis.call('ZREM', KEYS[2], ARGV[4])
end

return 1
"""

TRANSITION_APPLIED = 1
TRANSITION_REJECTED = 0
TRANSITION_MISSING = -1


class AtomicTrackerOperations:
    """
    Provides atomic Redis operations for tracker rows
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "cascade:messages"):
        """
        Initialize with Redis client

        Args:
            redis_client: Redis client instance (decoded responses)
            key_prefix: Prefix for all tracker keys
        """
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.active_key = f"{key_prefix}:active"

        # Register Lua scripts
        self._transition_script = self.redis.register_script(CONDITIONAL_TRANSITION_SCRIPT)

    def message_key(self, message_id: str) -> str:
        return f"{self.key_prefix}:{message_id}"

    def appointment_key(self, appointment_id: str) -> str:
        return f"{self.key_prefix}:appointment:{appointment_id}"

    def create(self, message_data: Dict[str, Any], active: bool = True) -> None:
        """
        Store a new row and its index entries in one transaction

        Args:
            message_data: Row as produced by ``ScheduledMessage.to_dict``
            active: Whether the row belongs in the active index
        """
        message_id = message_data["id"]

        # Convert None values to empty strings for Redis
        redis_data = {k: (v if v is not None else "") for k, v in message_data.items()}

        pipe = self.redis.pipeline()
        pipe.hset(self.message_key(message_id), mapping=redis_data)
        pipe.sadd(self.appointment_key(message_data["appointment_id"]), message_id)
        if active:
            pipe.zadd(self.active_key, {message_id: float(message_data["scheduled_ts"])})
        pipe.execute()

    def conditional_transition(
        self,
        message_id: str,
        allowed_statuses: Iterable[str],
        new_status: str,
        updated_at: str,
        error: Optional[str] = None,
        sent_at: Optional[str] = None,
        job_handle: Optional[str] = None,
        attempt: Optional[int] = None
    ) -> int:
        """
        Atomically move a row to ``new_status`` if its status is allowed

        Returns:
            TRANSITION_APPLIED, TRANSITION_REJECTED (status mismatch) or
            TRANSITION_MISSING (no such row)
        """
        result = self._transition_script(
            keys=[self.message_key(message_id), self.active_key],
            args=[
                ",".join(allowed_statuses),
                new_status,
                updated_at,
                message_id,
                error or "",
                sent_at or "",
                job_handle or "",
                "" if attempt is None else str(attempt),
            ]
        )
        return int(result)

