"""Tests for seat resolution and the identity provider."""

from unittest.mock import MagicMock

from caro.identity.models import AccountSession, IdentityKind, LocalIdentity
from caro.identity.provider import IdentityProvider
from caro.identity.resolver import choose_join_identity, resolve_seat, slot_matches
from caro.session.models import PlayerSlot
from caro.tests.helpers import (
    ACCOUNT_ID,
    GUEST_TOKEN,
    OPPONENT_ACCOUNT_ID,
    make_session,
    two_player_session,
)
from shared.storage import LocalStateStorage


def _slot(identity: str, seat: int, *, is_guest: bool) -> PlayerSlot:
    return PlayerSlot(identity=identity, username=identity, is_guest=is_guest, seat=seat)


class TestSlotMatches:
    def test_requires_same_kind(self):
        slot = _slot("same-id", 1, is_guest=False)

        assert slot_matches(slot, LocalIdentity.account("same-id"))
        assert not slot_matches(slot, LocalIdentity.guest("same-id"))


class TestResolveSeat:
    def test_no_identity_is_spectator(self):
        assert resolve_seat(make_session(), [], None) is None

    def test_roster_match(self):
        roster = [_slot(OPPONENT_ACCOUNT_ID, 1, is_guest=False), _slot(GUEST_TOKEN, 2, is_guest=True)]

        assert resolve_seat(None, roster, LocalIdentity.guest(GUEST_TOKEN)) == 2

    def test_guest_token_equal_to_account_id_never_matches(self):
        roster = [_slot("shared-value", 1, is_guest=False)]
        session = make_session(player1="shared-value", player1GuestId=None)

        assert resolve_seat(session, roster, LocalIdentity.guest("shared-value")) is None

    def test_lower_seat_wins_in_roster(self):
        roster = [_slot(ACCOUNT_ID, 2, is_guest=False), _slot(ACCOUNT_ID, 1, is_guest=False)]

        assert resolve_seat(None, roster, LocalIdentity.account(ACCOUNT_ID)) == 1

    def test_falls_back_to_session_fields(self):
        session = make_session(player1GuestId="someone-else", player2GuestId=GUEST_TOKEN)

        assert resolve_seat(session, [], LocalIdentity.guest(GUEST_TOKEN)) == 2

    def test_session_fallback_for_account(self):
        session = two_player_session()

        assert resolve_seat(session, [], LocalIdentity.account(OPPONENT_ACCOUNT_ID)) == 2

    def test_roster_takes_precedence_over_session(self):
        session = make_session()
        roster = [_slot(GUEST_TOKEN, 2, is_guest=True)]

        assert resolve_seat(session, roster, LocalIdentity.guest(GUEST_TOKEN)) == 2

    def test_unknown_identity(self):
        assert resolve_seat(two_player_session(), [], LocalIdentity.guest("stranger")) is None


class TestChooseJoinIdentity:
    def test_guest_without_account(self):
        identity = choose_join_identity(None, GUEST_TOKEN, None)

        assert identity == LocalIdentity(kind=IdentityKind.GUEST, value=GUEST_TOKEN)

    def test_account_when_logged_in(self):
        identity = choose_join_identity(None, GUEST_TOKEN, ACCOUNT_ID)

        assert identity.kind == IdentityKind.ACCOUNT
        assert identity.value == ACCOUNT_ID

    def test_rejoins_as_seated_guest_after_login(self):
        identity = choose_join_identity(make_session(), GUEST_TOKEN, ACCOUNT_ID)

        assert identity.is_guest
        assert identity.value == GUEST_TOKEN

    def test_rejoins_as_seated_account(self):
        session = make_session(player1GuestId=None, player2=ACCOUNT_ID)

        identity = choose_join_identity(session, GUEST_TOKEN, ACCOUNT_ID)

        assert identity == LocalIdentity.account(ACCOUNT_ID)


class TestIdentityProvider:
    def test_generates_and_persists_guest_token(self, tmp_path):
        storage = LocalStateStorage(tmp_path)
        provider = IdentityProvider(storage)

        token = provider.guest_token()

        assert token
        assert storage.load_guest_token() == token
        assert IdentityProvider(LocalStateStorage(tmp_path)).guest_token() == token

    def test_token_is_read_once(self):
        storage = MagicMock()
        storage.load_guest_token.return_value = GUEST_TOKEN
        provider = IdentityProvider(storage)

        provider.guest_token()
        provider.guest_token()

        storage.load_guest_token.assert_called_once()
        storage.save_guest_token.assert_not_called()

    def test_current_is_guest_with_name(self, tmp_path):
        storage = LocalStateStorage(tmp_path)
        storage.save_guest_token(GUEST_TOKEN)
        storage.save_guest_name("Alex")

        identity = IdentityProvider(storage).current()

        assert identity == LocalIdentity.guest(GUEST_TOKEN, "Alex")

    def test_current_is_account_when_logged_in(self, tmp_path):
        account = AccountSession(user_id=ACCOUNT_ID, username="ann", token="jwt")
        provider = IdentityProvider(LocalStateStorage(tmp_path), account=account)

        assert provider.current() == LocalIdentity.account(ACCOUNT_ID)
        assert provider.auth_token() == "jwt"
        assert provider.is_authenticated

    def test_logout_returns_to_guest(self, tmp_path):
        storage = LocalStateStorage(tmp_path)
        storage.save_guest_token(GUEST_TOKEN)
        provider = IdentityProvider(storage, account=AccountSession(user_id=ACCOUNT_ID))

        provider.set_account(None)

        assert provider.current().is_guest
        assert provider.auth_token() is None

    def test_set_guest_name_persists(self, tmp_path):
        storage = LocalStateStorage(tmp_path)
        provider = IdentityProvider(storage)

        provider.set_guest_name("Sam")

        assert provider.guest_name() == "Sam"
        assert storage.load_guest_name() == "Sam"
