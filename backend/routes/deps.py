from fastapi import Request

from nearfield.engine import Engine


def get_engine(request: Request) -> Engine:
    return request.app.state.engine
