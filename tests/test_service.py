from __future__ import annotations

import pytest

from account_service.domain.contracts import (
    UNSET,
    CreateAccountInput,
    PhoneInput,
    UpdateAccountInput,
)
from account_service.domain.errors import (
    AccountNotFoundError,
    EmailAlreadyExistsError,
    InvalidCredentialsError,
    InvalidEmailError,
    InvalidPasswordError,
)
from account_service.security.passwords import PasswordHasher

PHONE = PhoneInput(number="1234567", city_code="1", country_code="57")


def _register(service, email="ana@x.com", password="Secret123", phones=None, name="Ana"):
    return service.create_account(
        CreateAccountInput(name=name, email=email, password=password, phones=phones)
    )


def test_create_account_returns_active_view_with_token(service, tokens, clock):
    view = _register(service, phones=[])

    assert view.active is True
    assert view.phones == ()
    assert view.name == "Ana"
    assert view.email == "ana@x.com"
    assert view.created_at == view.updated_at == view.last_login == clock.now
    assert tokens.verify(view.token)
    assert tokens.subject_of(view.token) == "ana@x.com"
    assert tokens.claims_of(view.token).account_id == view.account_id


def test_create_account_without_phones_stores_empty_list(service, store):
    view = _register(service, phones=None)

    assert view.phones == ()
    assert store.find_by_id(view.account_id).phones == []


def test_create_account_keeps_phone_order(service):
    phones = [
        PhoneInput(number="111", city_code="1", country_code="57"),
        PhoneInput(number="222", city_code="2", country_code="58"),
    ]
    view = _register(service, phones=phones)

    assert [p.number for p in view.phones] == ["111", "222"]
    assert view.phones[1].country_code == "58"


def test_create_account_hashes_password(service, store, hasher):
    view = _register(service)

    stored = store.find_by_id(view.account_id)
    assert stored.password_hash != "Secret123"
    assert hasher.verify("Secret123", stored.password_hash)


@pytest.mark.parametrize("email", ["not-an-email", "ana@", "@x.com", "ana@x", ""])
def test_create_account_rejects_invalid_email(service, email):
    with pytest.raises(InvalidEmailError) as excinfo:
        _register(service, email=email)
    assert excinfo.value.code == "user.email.invalid"
    assert excinfo.value.value == email


@pytest.mark.parametrize("password", ["short1A", "alllowercase1", "ALLUPPER123", "NoDigitsHere", "With space1A"])
def test_create_account_rejects_weak_password(service, store, password):
    with pytest.raises(InvalidPasswordError) as excinfo:
        _register(service, password=password)
    assert excinfo.value.code == "user.password.invalid"
    assert store.count() == 0


def test_create_account_rejects_duplicate_email_case_insensitively(service):
    _register(service, email="ana@x.com")

    with pytest.raises(EmailAlreadyExistsError) as excinfo:
        _register(service, email="ANA@X.com", name="Other", password="Another999", phones=[PHONE])
    assert excinfo.value.code == "user.email.exists"


def test_inactive_account_still_holds_its_email(service):
    view = _register(service)
    service.update(view.account_id, UpdateAccountInput(active=False))

    with pytest.raises(EmailAlreadyExistsError):
        _register(service)


def test_authenticate_after_create_returns_same_identity(service, clock):
    created = _register(service)
    clock.advance(minutes=5)

    logged_in = service.authenticate("ana@x.com", "Secret123")

    assert logged_in.account_id == created.account_id
    assert logged_in.last_login == clock.now
    assert logged_in.last_login > created.last_login
    assert logged_in.token != created.token


def test_authenticate_is_case_insensitive_on_email(service):
    created = _register(service)

    assert service.authenticate("Ana@X.COM", "Secret123").account_id == created.account_id


def test_authenticate_persists_new_token(service, store):
    _register(service)

    view = service.authenticate("ana@x.com", "Secret123")

    assert store.find_by_id(view.account_id).token == view.token


def test_authenticate_failures_are_indistinguishable(service):
    _register(service)

    with pytest.raises(InvalidCredentialsError) as wrong_password:
        service.authenticate("ana@x.com", "Wrong12345")
    with pytest.raises(InvalidCredentialsError) as unknown_email:
        service.authenticate("nobody@x.com", "Secret123")

    assert wrong_password.value.code == unknown_email.value.code == "user.login.invalidCredentials"
    assert wrong_password.value.value == unknown_email.value.value
    assert str(wrong_password.value) == str(unknown_email.value)


def test_failed_authentication_does_not_touch_last_login(service, store, clock):
    created = _register(service)
    clock.advance(minutes=1)

    with pytest.raises(InvalidCredentialsError):
        service.authenticate("ana@x.com", "Wrong12345")

    assert store.find_by_id(created.account_id).last_login == created.last_login


def test_authenticate_rehashes_password_with_stale_work_factor(service, store, clock):
    created = _register(service)
    stored = store.find_by_id(created.account_id)
    stored.password_hash = PasswordHasher(rounds=5).hash("Secret123")
    store.save(stored)

    service.authenticate("ana@x.com", "Secret123")

    rehashed = store.find_by_id(created.account_id).password_hash
    assert rehashed.split("$")[2] == "04"


def test_get_by_id_returns_view(service):
    created = _register(service, phones=[PHONE])

    fetched = service.get_by_id(created.account_id)

    assert fetched == created


def test_get_by_id_unknown_raises_not_found(service):
    with pytest.raises(AccountNotFoundError) as excinfo:
        service.get_by_id("missing-id")
    assert excinfo.value.code == "user.notFound"
    assert excinfo.value.value == "missing-id"


def test_update_name_only_leaves_other_fields(service, store):
    created = _register(service, phones=[PHONE])
    before = store.find_by_id(created.account_id)

    updated = service.update(created.account_id, UpdateAccountInput(name="Ana Maria"))

    after = store.find_by_id(created.account_id)
    assert updated.name == "Ana Maria"
    assert after.email == before.email
    assert after.password_hash == before.password_hash
    assert after.active is before.active
    assert after.phones == before.phones


def test_update_ignores_blank_strings(service):
    created = _register(service)

    updated = service.update(
        created.account_id, UpdateAccountInput(name="   ", email="", password="  ")
    )

    assert updated.name == "Ana"
    assert updated.email == "ana@x.com"
    assert service.authenticate("ana@x.com", "Secret123").account_id == created.account_id


def test_update_with_empty_phone_list_clears_phones(service):
    created = _register(service, phones=[PHONE])

    updated = service.update(created.account_id, UpdateAccountInput(phones=[]))

    assert updated.phones == ()


def test_update_without_phones_keeps_them(service):
    created = _register(service, phones=[PHONE])

    updated = service.update(created.account_id, UpdateAccountInput(active=False))

    assert updated.active is False
    assert len(updated.phones) == 1
    assert updated.phones[0].number == PHONE.number


def test_update_replaces_phones(service):
    created = _register(service, phones=[PHONE])
    replacement = PhoneInput(number="999", city_code="9", country_code="1")

    updated = service.update(created.account_id, UpdateAccountInput(phones=[replacement]))

    assert [p.number for p in updated.phones] == ["999"]


def test_update_email_checks_uniqueness(service):
    _register(service, email="taken@x.com")
    created = _register(service, email="ana@x.com")

    with pytest.raises(EmailAlreadyExistsError):
        service.update(created.account_id, UpdateAccountInput(email="Taken@x.com"))


def test_update_email_case_change_skips_uniqueness_and_normalises(service):
    created = _register(service, email="ana@x.com")

    updated = service.update(created.account_id, UpdateAccountInput(email="ANA@x.com"))

    assert updated.email == "ana@x.com"


def test_update_email_rejects_bad_shape(service):
    created = _register(service)

    with pytest.raises(InvalidEmailError):
        service.update(created.account_id, UpdateAccountInput(email="broken"))


def test_update_email_allows_login_with_new_address(service):
    created = _register(service)

    service.update(created.account_id, UpdateAccountInput(email="new@x.com"))

    assert service.authenticate("new@x.com", "Secret123").account_id == created.account_id
    with pytest.raises(InvalidCredentialsError):
        service.authenticate("ana@x.com", "Secret123")


def test_update_password_is_hashed(service, store):
    created = _register(service)

    service.update(created.account_id, UpdateAccountInput(password="Changed456"))

    assert store.find_by_id(created.account_id).password_hash != "Changed456"
    assert service.authenticate("ana@x.com", "Changed456").account_id == created.account_id
    with pytest.raises(InvalidCredentialsError):
        service.authenticate("ana@x.com", "Secret123")


def test_update_password_validates_strength(service):
    created = _register(service)

    with pytest.raises(InvalidPasswordError):
        service.update(created.account_id, UpdateAccountInput(password="weak"))


def test_update_advances_updated_at_even_without_clock_tick(service, clock):
    created = _register(service)

    first = service.update(created.account_id, UpdateAccountInput(name="One"))
    second = service.update(created.account_id, UpdateAccountInput(name="Two"))

    assert created.updated_at < first.updated_at < second.updated_at


def test_update_unknown_account_raises_not_found(service):
    with pytest.raises(AccountNotFoundError):
        service.update("missing-id", UpdateAccountInput(name="x"))


def test_update_input_defaults_to_unset():
    changes = UpdateAccountInput()

    assert changes.phones is UNSET
    assert changes.active is UNSET
    assert not UNSET


def test_delete_makes_account_unreachable(service):
    created = _register(service)

    service.delete_by_id(created.account_id)

    with pytest.raises(AccountNotFoundError):
        service.get_by_id(created.account_id)
    with pytest.raises(InvalidCredentialsError):
        service.authenticate("ana@x.com", "Secret123")


def test_delete_releases_email(service):
    created = _register(service)
    service.delete_by_id(created.account_id)

    recreated = _register(service)

    assert recreated.account_id != created.account_id


def test_delete_unknown_raises_not_found(service):
    with pytest.raises(AccountNotFoundError):
        service.delete_by_id("missing-id")


def test_list_paged_normalises_arguments(service):
    page = service.list_paged(page=-3, size=0)

    assert page.page == 0
    assert page.size == 10


def test_list_paged_empty_store(service):
    page = service.list_paged(page=0, size=5)

    assert page.content == []
    assert page.total_elements == 0
    assert page.total_pages == 0


def test_list_paged_counts_pages_and_keeps_insertion_order(service):
    emails = [f"user{i}@x.com" for i in range(5)]
    for email in emails:
        _register(service, email=email)

    first = service.list_paged(page=0, size=2)
    last = service.list_paged(page=2, size=2)

    assert first.total_elements == 5
    assert first.total_pages == 3
    assert [v.email for v in first.content] == emails[:2]
    assert [v.email for v in last.content] == emails[4:]


def test_list_paged_out_of_range_page_is_empty(service):
    _register(service)

    page = service.list_paged(page=7, size=10)

    assert page.content == []
    assert page.total_elements == 1
    assert page.total_pages == 1
