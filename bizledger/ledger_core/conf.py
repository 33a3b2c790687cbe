from django.conf import settings

# Fallbacks used when settings.BIZLEDGER does not define a key
DEFAULTS = {
    "INVOICE_NUMBER_PREFIX": "INV-",
    "PO_NUMBER_PREFIX": "PO-",
    "GRN_NUMBER_PREFIX": "GRN-",
    "NUMBER_WIDTH": 6,
    "INVOICE_NUMBER_MAX_RETRIES": 5,
    "POST_GRN_TO_LEDGER": True,
    "ALLOW_NEGATIVE_STOCK": False,
    "RECONCILIATION_WINDOW_DAYS": 3,
    "AUTO_MATCH_MIN_SCORE": 0.9,
}


def app_setting(name):
    """Read one ledger setting, honouring override_settings in tests."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown BIZLEDGER setting: {name}")
    overrides = getattr(settings, "BIZLEDGER", {}) or {}
    return overrides.get(name, DEFAULTS[name])
