from types import SimpleNamespace

import httpx
import pytest
import stripe

from snowproblem.config import settings
from snowproblem.exceptions import PermissionDeniedError, TransientError
from snowproblem.models import EquipmentType, UserRole
from snowproblem.routes.account import profile_to_schema
from snowproblem.schemas import OnboardingRequest, ProfileUpdateRequest
from snowproblem.services import geocoding, payments, profiles


def mock_mapbox(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(geocoding.httpx, "AsyncClient", client_factory)


# ===== Profiles =====

@pytest.mark.asyncio
async def test_profile_created_on_first_call(db):
    profile = await profiles.get_or_create_profile(db, "new-user", "new@example.com")
    assert profile.role == UserRole.PROPERTY_OWNER
    assert profile.onboarded is False

    again = await profiles.get_or_create_profile(db, "new-user", "new@example.com")
    assert again.id == profile.id


@pytest.mark.asyncio
async def test_malformed_email_claim_is_not_stored(db):
    profile = await profiles.get_or_create_profile(db, "odd-user", "not-an-email")
    assert profile.email == ""
    assert profile_to_schema(profile).email is None

    valid = await profiles.get_or_create_profile(db, "plain-user", "plain@example.com")
    assert profile_to_schema(valid).email == "plain@example.com"


@pytest.mark.asyncio
async def test_onboarding_as_provider(db):
    profile = await profiles.get_or_create_profile(db, "plow-co", "plow@example.com")
    profile = await profiles.onboard(
        db,
        profile,
        OnboardingRequest(
            fullName="Plow Co",
            role=UserRole.SERVICE_PROVIDER,
            equipmentTypes=[EquipmentType.PLOW, EquipmentType.SALT_SPREADER],
            serviceRadiusMiles=15,
        ),
    )
    assert profile.onboarded is True
    assert profile.is_provider
    assert profile.equipment_types == ["plow", "salt_spreader"]
    assert profile.service_radius_miles == 15


@pytest.mark.asyncio
async def test_owner_profile_has_no_equipment(db, owner):
    profile = await profiles.update_profile(
        db, owner, ProfileUpdateRequest(bio="Corner lot", equipmentTypes=[EquipmentType.SHOVEL])
    )
    assert profile.bio == "Corner lot"
    assert profile.equipment_types is None


@pytest.mark.asyncio
async def test_nearby_providers_sorted_by_distance(db, provider, rival):
    await profiles.update_profile(db, provider, ProfileUpdateRequest(defaultLatitude=44.48, defaultLongitude=-73.21))
    await profiles.update_profile(db, rival, ProfileUpdateRequest(defaultLatitude=44.55, defaultLongitude=-73.15))

    found = await profiles.nearby_providers(db, 44.4759, -73.2121, 25)
    assert [p.profile.id for p in found] == [provider.id, rival.id]
    assert found[0].distance_miles < found[1].distance_miles

    assert await profiles.nearby_providers(db, 40.71, -74.0, 25) == []


def test_haversine_known_distance():
    # Burlington VT to Montpelier VT is roughly 35 miles
    assert 30 < profiles.haversine_miles(44.4759, -73.2121, 44.2601, -72.5754) < 40


# ===== Geocoding =====

@pytest.mark.asyncio
async def test_geocode_address(monkeypatch):
    def handler(request):
        assert request.url.params["access_token"] == settings.MAPBOX_TOKEN
        return httpx.Response(200, json={"features": [{"place_name": "12 Snowy Ln, Burlington", "center": [-73.21, 44.47]}]})

    mock_mapbox(monkeypatch, handler)
    result = await geocoding.geocode_address("12 Snowy Lane")
    assert result.latitude == 44.47
    assert result.longitude == -73.21


@pytest.mark.asyncio
async def test_geocode_no_match(monkeypatch):
    mock_mapbox(monkeypatch, lambda request: httpx.Response(200, json={"features": []}))
    assert await geocoding.geocode_address("nowhere at all") is None
    assert await geocoding.geocode_address("x") is None


@pytest.mark.asyncio
async def test_reverse_geocode_keeps_coordinates(monkeypatch):
    mock_mapbox(
        monkeypatch,
        lambda request: httpx.Response(200, json={"features": [{"place_name": "Church St", "center": [-73.0, 44.0]}]}),
    )
    result = await geocoding.reverse_geocode(44.4759, -73.2121)
    assert result.address == "Church St"
    assert (result.latitude, result.longitude) == (44.4759, -73.2121)


@pytest.mark.asyncio
async def test_geocoder_outage_is_transient(monkeypatch):
    mock_mapbox(monkeypatch, lambda request: httpx.Response(503))
    with pytest.raises(TransientError):
        await geocoding.geocode_address("12 Snowy Lane")


# ===== Payout onboarding =====

@pytest.mark.asyncio
async def test_start_onboarding_creates_account_once(db, provider, monkeypatch):
    created = []

    def fake_create(**kwargs):
        created.append(kwargs)
        return SimpleNamespace(id="acct_123")

    monkeypatch.setattr(stripe.Account, "create", fake_create)
    monkeypatch.setattr(stripe.AccountLink, "create", lambda **kwargs: SimpleNamespace(url=f"https://connect/{kwargs['account']}"))

    url = await payments.start_onboarding(db, provider, "https://api/payments/connect/callback")
    assert url == "https://connect/acct_123"
    assert provider.stripe_account_id == "acct_123"

    await payments.start_onboarding(db, provider, "https://api/payments/connect/callback")
    assert len(created) == 1


@pytest.mark.asyncio
async def test_owners_cannot_onboard_payouts(db, owner):
    with pytest.raises(PermissionDeniedError):
        await payments.start_onboarding(db, owner, "https://api/callback")


@pytest.mark.asyncio
async def test_finish_onboarding(db, provider, monkeypatch):
    assert (await payments.finish_onboarding(db, provider)).endswith(payments.ONBOARDING_NO_ACCOUNT)

    provider.stripe_account_id = "acct_123"
    monkeypatch.setattr(stripe.Account, "retrieve", lambda account_id: SimpleNamespace(details_submitted=False))
    assert (await payments.finish_onboarding(db, provider)).endswith(payments.ONBOARDING_INCOMPLETE)

    monkeypatch.setattr(stripe.Account, "retrieve", lambda account_id: SimpleNamespace(details_submitted=True))
    assert (await payments.finish_onboarding(db, provider)).endswith(payments.ONBOARDING_SUCCESS)
    assert provider.stripe_onboarding_complete is True


@pytest.mark.asyncio
async def test_payment_provider_errors_are_transient(db, provider, monkeypatch):
    def failing_create(**kwargs):
        raise stripe.StripeError("network down")

    monkeypatch.setattr(stripe.Account, "create", failing_create)
    with pytest.raises(TransientError):
        await payments.start_onboarding(db, provider, "https://api/callback")
