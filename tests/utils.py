from __future__ import annotations

import uuid


def make_headers(
    tenant_id: uuid.UUID | None,
    *,
    role: str = "owner",
    user_id: uuid.UUID | None = None,
) -> dict[str, str]:
    headers = {"X-User-Id": str(user_id or uuid.uuid4())}
    if tenant_id is not None:
        headers["X-Tenant-Id"] = str(tenant_id)
        headers["X-Tenant-Role"] = role
    return headers
