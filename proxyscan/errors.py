class ProxyScanError(Exception):
    """Базовая ошибка пакета."""


class IngestError(ProxyScanError):
    """Файл не удалось принять: неподдерживаемый формат или нет данных."""


class SessionStoreError(ProxyScanError):
    """Ошибка чтения/записи хранилища сессий."""


class SessionNotFound(SessionStoreError):
    pass
