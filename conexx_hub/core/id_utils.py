import shortuuid


def generate_id() -> str:
    return shortuuid.uuid()
