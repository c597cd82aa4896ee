import contextvars

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")
_actor: contextvars.ContextVar[str] = contextvars.ContextVar("actor", default="-")


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def set_actor(actor: str) -> None:
    _actor.set(actor)


def get_actor() -> str:
    return _actor.get()


def clear_context() -> None:
    _request_id.set("-")
    _actor.set("-")
