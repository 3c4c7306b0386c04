import shortuuid


def generate_id() -> str:
    return shortuuid.uuid()


def generate_request_id() -> str:
    return shortuuid.ShortUUID().random(length=16)
