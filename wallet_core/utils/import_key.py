import glob

from eth_account import Account

from wallet_core.signing.digest_signer import LocalAccountSigner


def import_signer_from_keystore(
    keystore_file_password, keystore_file_path="keystore/*"
) -> LocalAccountSigner:
    if keystore_file_path != "keystore/*":
        keystore = keystore_file_path
    else:
        keystore = glob.glob(keystore_file_path)[0]

    with open(keystore) as keyfile:
        encrypted_key = keyfile.read()
        private_key = Account.decrypt(encrypted_key, keystore_file_password)
        return LocalAccountSigner(private_key)


def import_signer_from_secret(secret: str) -> LocalAccountSigner:
    return LocalAccountSigner(bytes.fromhex(secret.removeprefix("0x")))
