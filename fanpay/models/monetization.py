from beanie import Document


class MonetizationSettingsDoc(Document):
    """Single row; absent fields fall back to app settings."""
    enable_post_gifts: bool | None = None
    allow_custom_amount: bool | None = None
    allow_anonymous_gifts: bool | None = None
    min_gift_cents: int | None = None
    max_gift_cents: int | None = None
    currency: str | None = None

    class Settings:
        name = "monetization_settings"


class GiftPreset(Document):
    amount_cents: int
    is_active: bool = True
    sort_order: int = 0

    class Settings:
        name = "gift_presets"
