class InvalidStateError(Exception):
    pass


class SessionFullError(Exception):
    """
    Raised by the relay when a session already holds as many connections
    as its capacity allows.
    """

    def __init__(self, session: str, capacity: int) -> None:
        super().__init__(f'Session "{session}" is full ({capacity} connections)')
        self.session = session
        self.capacity = capacity
