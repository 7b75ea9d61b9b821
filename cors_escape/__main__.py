import uvicorn

from cors_escape.vars import HOST, PORT


def main():
    uvicorn.run("cors_escape.server:app", host=HOST, port=PORT)


if __name__ == "__main__":
    main()
