"""ctx-proxy: conversation history sanitizer and context service for tool-calling agents"""
