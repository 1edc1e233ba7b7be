"""GitHub collaborators: REST client, identities, OAuth and secret sealing.

Import submodules directly (``repochain.github.client``, ``.auth``,
``.oauth``, ``.sodium``, ``.operations``); the package root only exposes
the client so that ``repochain.request`` can import it without cycles.
"""

from repochain.github.client import GitHubClient, Response

__all__ = ["GitHubClient", "Response"]
