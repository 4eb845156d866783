"""client/ -- Command-line admin client for a linkshelf server.

Layer rule: client/ imports only stdlib, third-party libraries, and core/.
It talks to the server over HTTP and never imports api/, auth/, or catalog/.
"""
