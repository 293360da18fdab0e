"""Caching HTTP backend for files that are served from URIs."""