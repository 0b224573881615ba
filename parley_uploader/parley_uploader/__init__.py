"""Folder watcher that pushes documents to the Parley API."""
