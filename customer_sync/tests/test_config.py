from customer_sync.config import ClerkSyncSettings, get_settings, load_settings


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("CLERK_WEBHOOK_SECRET", "  whsec_test  ")
    monkeypatch.setenv("CUSTOMERS_TABLE", "customers")
    monkeypatch.setenv("USE_IN_MEMORY_CUSTOMER_STORE", "yes")
    monkeypatch.setenv("CUSTOMERS_EMAIL_INDEX", "by_email")
    monkeypatch.delenv("CUSTOMERS_CLERK_ID_INDEX", raising=False)

    settings = load_settings()

    assert settings.clerk_webhook_secret == "whsec_test"
    assert settings.customers_table == "customers"
    assert settings.use_in_memory_customer_store is True
    assert settings.clerk_id_index == "customers_by_clerk_id"
    assert settings.email_index == "by_email"


def test_load_settings_defaults(monkeypatch):
    for name in (
        "CLERK_WEBHOOK_SECRET",
        "CUSTOMERS_TABLE",
        "USE_IN_MEMORY_CUSTOMER_STORE",
        "CUSTOMERS_CLERK_ID_INDEX",
        "CUSTOMERS_EMAIL_INDEX",
    ):
        monkeypatch.delenv(name, raising=False)

    assert load_settings() == ClerkSyncSettings()


def test_get_settings_is_loaded_once(monkeypatch):
    get_settings.cache_clear()
    monkeypatch.setenv("CLERK_WEBHOOK_SECRET", "whsec_first")
    first = get_settings()
    monkeypatch.setenv("CLERK_WEBHOOK_SECRET", "whsec_second")

    assert get_settings() is first
    assert get_settings().clerk_webhook_secret == "whsec_first"
    get_settings.cache_clear()
