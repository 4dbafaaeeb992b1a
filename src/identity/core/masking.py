"""Display masks for contact values stored on the user row."""

EMAIL_PREFIX_LEN = 3
MOBILE_PREFIX_LEN = 5
MOBILE_SUFFIX_LEN = 3


def _overlay(value: str, prefix_len: int, suffix_len: int, mask: str = "*") -> str:
    n = len(value)
    if n <= prefix_len:
        return value + mask

    if suffix_len <= 0:
        return value[:prefix_len] + mask

    if n - prefix_len > suffix_len:
        return value[:prefix_len] + mask + value[n - suffix_len :]

    return value[:prefix_len] + mask + value[prefix_len:]


def mask_email(value: str) -> str:
    """Mask the local part of an email, e.g. ``123456@abc.com`` -> ``123*@abc.com``.

    Values without an ``@`` are not valid emails and are returned unchanged.
    """
    if not value:
        return ""

    local, sep, domain = value.partition("@")
    if not sep:
        return value

    return _overlay(local, EMAIL_PREFIX_LEN, 0) + "@" + domain


def mask_mobile(value: str) -> str:
    """Mask a ``[country]-[number]`` mobile, e.g. ``1-2226060809`` -> ``1-222*809``."""
    if not value:
        return ""

    return _overlay(value, MOBILE_PREFIX_LEN, MOBILE_SUFFIX_LEN)
