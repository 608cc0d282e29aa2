import uvicorn

from taskhub.config import HOST, LOG_LEVEL, PORT


def main():
    uvicorn.run("taskhub.main:app", host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
