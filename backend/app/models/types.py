from sqlalchemy import Enum as SAEnum


class CaseInsensitiveEnum(SAEnum):
    """Enum column type storing the lowercase enum value.

    Accepts members, values or member names in any case on the way in, so
    ``"CONFIRMED"``, ``"confirmed"`` and ``BookingStatus.CONFIRMED`` all bind
    to the same stored string.
    """

    def __init__(self, enum_cls, **kwargs):
        self._enum_cls = enum_cls
        self._enum_kwargs = kwargs.copy()
        kwargs.setdefault("values_callable", lambda enum: [e.value for e in enum])
        super().__init__(enum_cls, **kwargs)

    def adapt(self, impltype, **kw):
        params = {**self._enum_kwargs, **kw}
        return CaseInsensitiveEnum(self._enum_cls, **params)

    def _coerce(self, value):
        if isinstance(value, self._enum_cls):
            return value.value
        text = str(value).strip().lower()
        for member in self._enum_cls:
            if text in (str(member.value).lower(), member.name.lower()):
                return member.value
        return text

    def bind_processor(self, dialect):
        parent = super().bind_processor(dialect)

        def process(value):
            if value is None:
                return None
            value = self._coerce(value)
            if parent:
                return parent(value)
            return value

        return process

    def result_processor(self, dialect, coltype):
        parent = super().result_processor(dialect, coltype)

        def process(value):
            if value is None:
                return None
            if isinstance(value, str):
                value = self._coerce(value)
            if parent:
                return parent(value)
            return value

        return process
