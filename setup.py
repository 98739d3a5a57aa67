from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

with open("requirements-dev.txt", "r", encoding="utf-8") as fh:
    dev_requirements = [
        line.strip() for line in fh
        if line.strip() and not line.startswith("#") and not line.startswith("-r")
    ]

setup(
    name="ytdl",
    version="1.0.0",
    description="Terminal front end for yt-dlp and ffmpeg with retry escalation and an audio + single frame mode",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=["ytdl"],
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Video",
        "Topic :: Multimedia :: Sound/Audio",
    ],
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={"test": dev_requirements},
    entry_points={
        "console_scripts": [
            "ytdl=ytdl:main",
        ],
    },
    keywords="youtube downloader yt-dlp ffmpeg wrapper audio video mp4 chapters subtitles",
)
