"""Internal building blocks of :class:`pymarks.client.BookmarkClient`."""
