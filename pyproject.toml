[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "emitter"
version = "0.1.0"
description = "Publish/subscribe messaging core: subscription trie, message frames, MQTT packet codec and protocol-sniffing listener"
requires-python = ">=3.10"
dependencies = []
keywords = ["mqtt", "pubsub", "messaging", "broker", "websocket", "trie"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["emitter"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
