import uvicorn

from embed_proxy.vars import HOST, PORT


def main():
    uvicorn.run("embed_proxy.server:app", host=HOST, port=PORT)


if __name__ == "__main__":
    main()
