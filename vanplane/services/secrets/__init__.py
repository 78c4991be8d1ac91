from vanplane.services.secrets.store import FileSecretStore, Secret, SecretStore, get_secret_store

__all__ = ["FileSecretStore", "Secret", "SecretStore", "get_secret_store"]
