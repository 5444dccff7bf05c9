# setup.py
"""Minimal setup for chat-tree."""

from setuptools import setup, find_packages

setup(
    name="chat-tree",
    version="0.1.0",
    description="Branching conversation history with a message tree",
    packages=find_packages(include=["chat_tree", "chat_tree.*"]),
    python_requires=">=3.10",
    install_requires=[
        "sqlalchemy>=2.0",
        "loguru",
        "python-dotenv",
        "fire",
    ],
    extras_require={
        "dev": ["pytest>=6.0"]
    },
    entry_points={
        'console_scripts': [
            'chat-tree=chat_tree.cli:main',
        ],
    },
)
