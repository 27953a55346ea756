from slowapi import Limiter

from proxyguard.core.settings import get_settings
from proxyguard.security.client_ip import client_ip

# Keyed on the real client address, not the nginx hop in front of us.
limiter = Limiter(key_func=client_ip)


def verify_rate_limit() -> str:
    return get_settings().challenge_verify_rate_limit
