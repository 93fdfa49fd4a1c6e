"""On-chain stake transfer through the Anchor staking program.

The submitter owns address derivation, instruction encoding and the
send/confirm round trip. Signing is delegated to a signer object exposing
``pubkey()`` and ``sign_transaction(tx)``, so the same code serves a
server-held keypair or any external signing service.
"""

import hashlib
import struct
from typing import Dict, List, Optional

from flask import current_app
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import (
    RPCException,
    RPCNoResultException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.exceptions import SolanaRpcException
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction

from .errors import (
    StakeConfigurationError,
    StakeProgramError,
    StakeSigningError,
    StakeSubmissionError,
)

LAMPORTS_PER_SOL = 1_000_000_000

STATE_SEED = b'state'
VAULT_SEED = b'vault'
PLAYER_SEED = b'player'


def anchor_discriminator(name: str) -> bytes:
    return hashlib.sha256(f'global:{name}'.encode()).digest()[:8]


def to_lamports(amount: float) -> int:
    return int(round(amount * LAMPORTS_PER_SOL))


def derive_stake_accounts(program_id: Pubkey, wallet: Pubkey) -> Dict[str, Pubkey]:
    """Program-derived addresses used by the ``stake`` instruction."""
    state, _ = Pubkey.find_program_address([STATE_SEED], program_id)
    vault, _ = Pubkey.find_program_address([VAULT_SEED], program_id)
    player, _ = Pubkey.find_program_address([PLAYER_SEED, bytes(wallet)], program_id)
    return {'state': state, 'vault': vault, 'player': player}


def build_stake_instruction(program_id: Pubkey, wallet: Pubkey, lamports: int) -> Instruction:
    accounts = derive_stake_accounts(program_id, wallet)
    data = anchor_discriminator('stake') + struct.pack('<Q', lamports)
    metas = [
        AccountMeta(wallet, is_signer=True, is_writable=True),
        AccountMeta(accounts['state'], is_signer=False, is_writable=True),
        AccountMeta(accounts['vault'], is_signer=False, is_writable=True),
        AccountMeta(accounts['player'], is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, data, metas)


class KeypairSigner:
    """Signs with a keypair held by this process."""

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    @classmethod
    def from_base58(cls, secret: str) -> 'KeypairSigner':
        return cls(Keypair.from_base58_string(secret))

    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    def sign_transaction(self, tx: Transaction) -> Transaction:
        tx.sign([self.keypair], tx.message.recent_blockhash)
        return tx


def _program_logs(exc: BaseException) -> List[str]:
    for arg in getattr(exc, 'args', ()):
        data = getattr(arg, 'data', None)
        logs = getattr(data, 'logs', None)
        if logs:
            return list(logs)
    return []


class StakeSubmitter:
    def __init__(self, client: Optional[Client], program_id: Optional[Pubkey], signer=None):
        self.client = client
        self.program_id = program_id
        self.signer = signer

    def submit_stake(self, wallet: str, amount: float) -> str:
        """Transfer ``amount`` SOL from ``wallet`` into the vault. Returns the signature."""
        if self.client is None:
            raise StakeConfigurationError('RPC connection is required')
        if self.program_id is None:
            raise StakeConfigurationError('Stake program id is not configured')
        if self.signer is None:
            raise StakeConfigurationError('Wallet signer is not connected')
        authority = self.signer.pubkey()
        if str(authority) != wallet:
            raise StakeConfigurationError(f'Signer {authority} cannot stake for {wallet}')

        lamports = to_lamports(amount)
        ix = build_stake_instruction(self.program_id, authority, lamports)
        try:
            latest = self.client.get_latest_blockhash().value
        except (SolanaRpcException, RPCException, RPCNoResultException) as exc:
            raise StakeSubmissionError(f'Failed to fetch blockhash: {exc}') from exc

        message = Message.new_with_blockhash([ix], authority, latest.blockhash)
        tx = Transaction.new_unsigned(message)
        try:
            signed = self.signer.sign_transaction(tx)
        except Exception as exc:
            raise StakeSigningError(f'Failed to sign transaction: {exc}') from exc
        if signed is None:
            raise StakeSigningError('Failed to sign transaction')

        signature = self._send_and_confirm(signed, latest.last_valid_block_height)
        current_app.logger.info(f"[stake-confirmed] wallet={wallet} lamports={lamports} sig={signature}")
        return signature

    def _send_and_confirm(self, tx: Transaction, last_valid_block_height: int) -> str:
        try:
            sig = self.client.send_raw_transaction(bytes(tx)).value
        except RPCNoResultException as exc:
            raise StakeSubmissionError(f'Failed to send transaction: {exc}') from exc
        except RPCException as exc:
            logs = _program_logs(exc)
            if logs:
                raise StakeProgramError('Stake instruction rejected by program', logs) from exc
            raise StakeSubmissionError(f'Failed to send transaction: {exc}') from exc
        except SolanaRpcException as exc:
            raise StakeSubmissionError(f'Failed to send transaction: {exc}') from exc

        try:
            resp = self.client.confirm_transaction(
                sig, commitment=Confirmed, last_valid_block_height=last_valid_block_height,
            )
        except (TransactionExpiredBlockheightExceededError, UnconfirmedTxError,
                SolanaRpcException, RPCException, RPCNoResultException) as exc:
            # Expired or unconfirmed: the transfer may still land, so report the signature
            raise StakeSubmissionError(f'Transaction {sig} not confirmed: {exc}', signature=str(sig)) from exc

        status = resp.value[0] if resp.value else None
        if status is None:
            raise StakeSubmissionError(f'Transaction {sig} not confirmed', signature=str(sig))
        if status.err is not None:
            raise StakeProgramError(f'Transaction {sig} failed: {status.err}')
        return str(sig)


def build_submitter(cfg) -> Optional[StakeSubmitter]:
    """Server-side submitter, or None when no signer secret is configured."""
    secret = cfg.get('STAKE_SIGNER_SECRET')
    if not secret:
        return None
    program = cfg.get('STAKE_PROGRAM_ID')
    try:
        program_id = Pubkey.from_string(program) if program else None
    except ValueError as exc:
        raise StakeConfigurationError(f'Invalid STAKE_PROGRAM_ID: {program}') from exc
    return StakeSubmitter(Client(cfg.get('SOLANA_RPC_URL')), program_id, KeypairSigner.from_base58(secret))
