from types import SimpleNamespace

import pytest
from supabase import AuthApiError

from app.core.errors import ErrorCode, RelayError
from app.core.supabase import SupabaseGateway


def gateway_raising(exc):
    def get_user(_token):
        raise exc

    gateway = SupabaseGateway.__new__(SupabaseGateway)
    gateway.admin = SimpleNamespace(auth=SimpleNamespace(get_user=get_user))
    return gateway


def test_rejected_token_resolves_to_none():
    gateway = gateway_raising(AuthApiError("invalid JWT", 401, None))
    assert gateway.get_token_user("forged") is None


def test_provider_outage_on_token_lookup_is_upstream_error():
    gateway = gateway_raising(AuthApiError("upstream connect error", 503, None))

    with pytest.raises(RelayError) as exc:
        gateway.get_token_user("token")
    assert exc.value.code == ErrorCode.UPSTREAM_ERROR
    assert exc.value.message == "upstream connect error"


def test_token_user_is_mapped():
    user = SimpleNamespace(id="u1", email="ana@corredora.cl")
    gateway = SupabaseGateway.__new__(SupabaseGateway)
    gateway.admin = SimpleNamespace(
        auth=SimpleNamespace(get_user=lambda _token: SimpleNamespace(user=user))
    )
    assert gateway.get_token_user("tok") == {"id": "u1", "email": "ana@corredora.cl"}
