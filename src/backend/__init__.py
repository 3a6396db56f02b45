"""
Research Agent - streaming chat backend with remote tool execution
==================================================================

FastAPI backend that answers chat messages with an OpenAI-compatible model,
running tool calls against MCP servers over HTTP between model round trips.

Key Features:
    - **Chats**: PostgreSQL persistence with duplicate-submission detection
    - **Streaming**: Newline-delimited JSON completions and Server-Sent Events push
    - **Tasks**: In-memory task lifecycle with cancellation and result artifacts
    - **Tool Registry**: Discovery across configured MCP servers, refreshed on demand
    - **Sanitization**: Reasoning and tool markup stripped before anything is stored

Modules:
    api: FastAPI routes, services, middleware and push channels
    core: Settings, constants and the system prompt
    models: Pydantic models for turns, chats, tasks, tools and API schemas
    utils: Logging, metrics, database helpers and client factories
    integrations: MCP HTTP client and tool registry
"""
