from collections import Counter
from typing import Any, Dict

from app.core.supabase import SupabaseGateway
from app.schemas.certificates import CERTIFICATE_STATES
from app.schemas.users import role_name


def build_summary(gateway: SupabaseGateway) -> Dict[str, Any]:
    certificates = gateway.list_certificates()
    profiles = gateway.list_profiles()

    by_status = {state: 0 for state in CERTIFICATE_STATES}
    by_month: Counter = Counter()
    total_bytes = 0
    for cert in certificates:
        estado = cert.get("estado") or "pendiente"
        by_status[estado] = by_status.get(estado, 0) + 1
        total_bytes += int(cert.get("tamaño_bytes") or 0)
        fecha = cert.get("fecha_carga") or ""
        if len(fecha) >= 7:
            by_month[fecha[:7]] += 1

    users_by_role = Counter(role_name(p) or "sin_rol" for p in profiles)

    return {
        "total": len(certificates),
        "total_bytes": total_bytes,
        "by_status": by_status,
        "by_month": dict(sorted(by_month.items())),
        "users_by_role": dict(users_by_role),
    }
