import logging
from typing import Any, Optional

import aiohttp

from lnnetkit.lib.errors import RestError
from lnnetkit.lib.utils import decode_byte_string_to_dict_or_str

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

REQUEST_TIMEOUT = 60


def error_message(body, status):
    """
    Extracts the error message from an error response body.

    Nodes report errors either as a plain string, as {"error": "..."},
    {"error": {"code": ..., "message": "..."}} or {"message": "..."}.

    :return: str, node error code or None
    """
    if isinstance(body, dict):
        error = body.get('error')
        if isinstance(error, dict):
            return error.get('message', str(error)), error.get('code')
        if error:
            return str(error), body.get('code')
        if body.get('message'):
            return str(body['message']), body.get('code')
    if body:
        return str(body), None
    return f'HTTP {status}', None


class RestClient(object):
    """
    Thin async client for the REST interface of a lightning node.

    A session is created for every request.
    """
    def __init__(self, base_url: str, headers: Optional[dict] = None,
                 ssl: Any = None, auth: Optional[aiohttp.BasicAuth] = None,
                 form: bool = False):
        """
        :param base_url: str: e.g. https://127.0.0.1:8081/v1
        :param headers: dict: headers sent with every request
        :param ssl: ssl.SSLContext, False to skip verification or None
        :param auth: basic auth credentials
        :param form: bool: send bodies form encoded instead of as json
        """
        self.base_url = base_url.rstrip('/')
        self.headers = headers or {}
        self.ssl = ssl
        self.auth = auth
        self.form = form

    async def request(self, method, path, body=None, first_line=False):
        """
        Performs a request and returns the decoded body.

        :param method: str
        :param path: str
        :param body: dict
        :param first_line: bool: only read the first line of a streamed
            response
        :return: dict, list or str
        """
        url = f'{self.base_url}/{path.lstrip("/")}'
        logger.debug("HTTP %s %s %s", method, url, body or '')
        kwargs = {}
        if body is not None:
            kwargs['data' if self.form else 'json'] = body
        if self.ssl is not None:
            kwargs['ssl'] = self.ssl
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)

        async with aiohttp.ClientSession(
                headers=self.headers, auth=self.auth,
                timeout=timeout) as session:
            async with session.request(method, url, **kwargs) as resp:
                if first_line and resp.status < 400:
                    raw = await resp.content.readline()
                else:
                    raw = await resp.text()
                data = decode_byte_string_to_dict_or_str(raw)
                status = resp.status

        if status >= 400:
            message, code = error_message(data, status)
            logger.debug("HTTP %s %s failed (%s): %s", method, url, status,
                         message)
            raise RestError(message, status=status, code=code)
        logger.debug("HTTP %s %s: %s", method, url, data)
        return data

    async def get(self, path):
        return await self.request('GET', path)

    async def post(self, path, body=None):
        return await self.request('POST', path, body if body else {})

    async def delete(self, path, first_line=False):
        return await self.request('DELETE', path, first_line=first_line)
