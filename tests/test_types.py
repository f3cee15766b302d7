"""Unit tests for shared types."""

from datetime import timedelta
from decimal import Decimal

import pytest

from arcle.core.events import ChallengeEvent, NotificationType
from arcle.core.types import (
    BridgeMode,
    Challenge,
    ChallengePurpose,
    ChallengeStatus,
    Credential,
    Intent,
    IntentKind,
    IntentStatus,
    Network,
    SessionKey,
    TransactionInfo,
    TransactionState,
    TransactionType,
    to_decimal,
    utcnow,
)


class TestNetwork:
    def test_from_string(self) -> None:
        assert Network.from_string("eth_sepolia") == Network.ETH_SEPOLIA
        assert Network.from_string("ARC-TESTNET") == Network.ARC_TESTNET

    def test_unknown_network(self) -> None:
        with pytest.raises(ValueError, match="Unknown network"):
            Network.from_string("SOLANA")

    def test_is_testnet(self) -> None:
        assert Network.BASE_SEPOLIA.is_testnet()
        assert Network.ARC_TESTNET.is_testnet()
        assert not Network.ETH.is_testnet()


def test_to_decimal_avoids_float_artifacts() -> None:
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal("10.50") == Decimal("10.50")


class TestIntent:
    def test_resume_context_rebuilds_authorized_values(self) -> None:
        intent = Intent(
            id="int_1",
            kind=IntentKind.BRIDGE,
            owner_user_id="user-1",
            wallet_id="wallet-123",
            amount=Decimal("12.5"),
            destination="0x" + "22" * 20,
            source_address="0x" + "11" * 20,
            blockchain=Network.ETH_SEPOLIA,
            from_chain=Network.ETH_SEPOLIA,
            to_chain=Network.BASE_SEPOLIA,
            bridge_mode=BridgeMode.FAST,
            bridge_id="br_1",
        )

        rebuilt = Intent.from_resume_context(intent.resume_context())

        assert rebuilt.id == "int_1"
        assert rebuilt.amount == Decimal("12.5")
        assert rebuilt.destination == intent.destination
        assert rebuilt.to_chain == Network.BASE_SEPOLIA
        assert rebuilt.bridge_mode == BridgeMode.FAST
        assert rebuilt.bridge_id == "br_1"
        assert rebuilt.status == IntentStatus.AUTHORIZING
        assert "balance_before" not in rebuilt.metadata

    def test_resume_context_keeps_balance_snapshot(self) -> None:
        intent = Intent(
            id="int_1",
            kind=IntentKind.TRANSFER,
            owner_user_id="user-1",
            wallet_id="wallet-123",
            amount=Decimal("10"),
            destination="0x" + "22" * 20,
            metadata={"balance_before": "100", "interactive": True},
        )

        rebuilt = Intent.from_resume_context(intent.resume_context())

        assert rebuilt.metadata == {"balance_before": "100"}

    def test_terminal_states(self) -> None:
        intent = Intent(
            id="int_1",
            kind=IntentKind.TRANSFER,
            owner_user_id="user-1",
            wallet_id="wallet-123",
            amount=Decimal("1"),
            destination="0x" + "22" * 20,
        )
        assert not intent.is_terminal
        intent.status = IntentStatus.CANCELLED
        assert intent.is_terminal


class TestSessionKey:
    def _key(self, **overrides) -> SessionKey:
        values = dict(
            id="sk_1",
            wallet_id="wallet-123",
            spending_limit=Decimal("50"),
            spending_used=Decimal("10"),
            expires_at=utcnow() + timedelta(hours=1),
        )
        values.update(overrides)
        return SessionKey(**values)

    def test_can_cover_within_limit(self) -> None:
        key = self._key()

        assert key.remaining == Decimal("40")
        assert key.can_cover(Decimal("40"))
        assert not key.can_cover(Decimal("40.01"))

    def test_max_per_transaction(self) -> None:
        key = self._key(max_per_transaction=Decimal("5"))

        assert key.can_cover(Decimal("5"))
        assert not key.can_cover(Decimal("6"))

    def test_expired_and_revoked_keys_are_inactive(self) -> None:
        assert not self._key(expires_at=utcnow() - timedelta(seconds=1)).is_active()
        assert not self._key(revoked=True).is_active()

    def test_allowed_actions_default_to_every_kind(self) -> None:
        key = self._key()

        assert all(key.allows(kind) for kind in IntentKind)
        restored = SessionKey.from_dict(key.to_dict())
        assert restored.allowed_actions == list(IntentKind)
        assert restored.spending_used == Decimal("10")


class TestChallenge:
    def test_record_round_trip_keeps_resume_context(self) -> None:
        challenge = Challenge(
            id="ch-1",
            owner_user_id="user-1",
            wallet_id="wallet-123",
            purpose=ChallengePurpose.GATEWAY_TRANSFER_SIGN,
            auth_token="token",
            encryption_key="key",
            resume_context={"intent_id": "int_1", "step": "sign"},
            intent_id="int_1",
        )

        restored = Challenge.from_dict(challenge.to_dict())

        assert restored.purpose == ChallengePurpose.GATEWAY_TRANSFER_SIGN
        assert restored.resume_context["step"] == "sign"
        assert restored.is_pending

    def test_secrets_not_in_repr(self) -> None:
        challenge = Challenge(
            id="ch-1",
            owner_user_id="user-1",
            wallet_id="wallet-123",
            purpose=ChallengePurpose.TRANSFER,
            auth_token="secret-token",
            encryption_key="secret-key",
        )

        assert "secret-token" not in repr(challenge)


class TestCredential:
    def test_expires_within(self) -> None:
        credential = Credential(
            owner_id="user-1",
            auth_token="t",
            encryption_key="k",
            expires_at=utcnow() + timedelta(seconds=120),
        )

        assert credential.expires_within(300)
        assert not credential.expires_within(60)
        assert not credential.is_expired()

    def test_refresh_produces_new_snapshot(self) -> None:
        credential = Credential(
            owner_id="user-1", auth_token="t", encryption_key="k", expires_at=utcnow()
        )

        refreshed = credential.with_token(auth_token="t2")

        assert credential.auth_token == "t"
        assert refreshed.auth_token == "t2"


class TestTransactionInfo:
    def test_from_api_response(self) -> None:
        tx = TransactionInfo.from_api_response(
            {
                "id": "tx-1",
                "state": "CONFIRMED",
                "txHash": "0x" + "ab" * 32,
                "transactionType": "INBOUND",
                "amounts": ["10.5"],
                "createDate": "2025-01-01T00:00:00Z",
            }
        )

        assert tx.is_confirmed()
        assert not tx.is_terminal()
        assert tx.transaction_type == TransactionType.INBOUND
        assert tx.amount == Decimal("10.5")
        assert tx.create_date.tzinfo is not None

    def test_failed_states(self) -> None:
        tx = TransactionInfo(id="tx-1", state=TransactionState.DENIED)

        assert tx.is_failed()
        assert tx.is_terminal()


class TestEvents:
    def test_challenge_event_from_notification(self) -> None:
        event = ChallengeEvent.from_notification(
            {"id": "ch-1", "status": "FAILED", "errorCode": 155706, "errorMessage": "User declined"}
        )

        assert event.status == ChallengeStatus.FAILED
        assert not event.succeeded
        assert event.error_code == "155706"

    def test_unknown_status_is_pending(self) -> None:
        assert ChallengeEvent.from_notification({"id": "ch-1"}).status == ChallengeStatus.PENDING

    def test_notification_types(self) -> None:
        assert NotificationType.from_raw("challenges.initialize") == NotificationType.CHALLENGE
        assert NotificationType.from_raw("transactions.inbound") == NotificationType.TRANSACTION_INBOUND
        assert NotificationType.from_raw("wallets.created") == NotificationType.UNKNOWN
