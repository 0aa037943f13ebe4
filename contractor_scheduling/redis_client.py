# contractor_scheduling/redis_client.py

from redis import Redis


def build_redis_client(redis_url: str) -> Redis:
    # connection is lazy: nothing is opened until the first command
    return Redis.from_url(redis_url, decode_responses=True)
