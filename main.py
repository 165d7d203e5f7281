import uvicorn

from dual_subtitles.app import app

if __name__ == "__main__":
    uvicorn.run("dual_subtitles.app:app", host="0.0.0.0", port=8000, reload=True)
