from starlette.convertors import Convertor, register_url_convertor

OBJECT_ID_PATTERN = "[a-f0-9]{24}"


class ObjectIdConvertor(Convertor):
    """Path segment shaped like a Mongo ObjectId; anything else does not match the route"""
    regex = OBJECT_ID_PATTERN

    def convert(self, value: str) -> str:
        return value

    def to_string(self, value) -> str:
        return str(value)


register_url_convertor("objectid", ObjectIdConvertor())
