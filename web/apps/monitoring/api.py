from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import HttpStockLedgerClient, ledger_breaker


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        db_ok = False

    components = {"db": {"ok": db_ok}}
    ok = db_ok
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        ledger_ok = HttpStockLedgerClient().health()
        components["ledger"] = {"ok": ledger_ok, "circuit": ledger_breaker.state}
        ok = ok and ledger_ok
    else:
        components["ledger"] = {"ok": True, "mode": "in-process"}

    code = 200 if ok else 503
    return JsonResponse({"ok": ok, "components": components}, status=code)
