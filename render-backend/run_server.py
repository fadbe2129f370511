import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        # Uploads, rendered videos and job workspaces must not trigger a reload
        reload_excludes=["media/*", "media/videos/*", "media/uploads/*", "*.status.json"]
    )
