"""Locating a stored message by its Message-ID within one folder."""

from mailbridge.store.base import MailStore
from mailbridge.store.types import Folder, StoredHeader


class MailLookupError(Exception):
    """Base for lookup failures that are reported to the agent as tool results."""


class FolderNotFoundError(MailLookupError):
    def __init__(self, folder_path: str) -> None:
        super().__init__(f"Folder not found: {folder_path}")
        self.folder_path = folder_path


class MessageNotFoundError(MailLookupError):
    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message not found: {message_id}")
        self.message_id = message_id


def locate_header(store: MailStore, folder_path: str, message_id: str) -> tuple[StoredHeader, Folder]:
    """Linear scan of the folder's local index for ``message_id``.

    Raises FolderNotFoundError or MessageNotFoundError.
    """
    folder = store.get_folder(folder_path or "")
    if folder is None:
        raise FolderNotFoundError(folder_path)
    for header in store.enumerate_messages(folder):
        if header.message_id == message_id:
            return header, folder
    raise MessageNotFoundError(message_id)
