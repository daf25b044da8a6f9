import asyncio
import json
import logging
import socket

import zmq
import zmq.asyncio as azmq

from turtlectl.messages import *

"""
------------------
NETWORK CONFIG
------------------
"""
class NetworkConfig(object):
    """
    ## Network Configuration Object

    Describes the network ports assigned to a transport handle.

    #### Attributes:
        - network_name (`str`): name of the network this configuration belongs to
        - address_map (`dict`): dictionary mapping types of network ports to the addresses to be bound or connected to.
            Addresses containing a `*` are bound, all others are connected.
    """
    def __init__(self, network_name : str, address_map : dict = None) -> None:
        """
        Creates an instance of a Network Config Object

        ### Arguments:
            - network_name (`str`): name of the network this configuration belongs to
            - address_map (`dict`): dictionary mapping types of network ports to lists of addresses
        """
        super().__init__()
        if not isinstance(network_name, str):
            raise TypeError(f'Expected `network_name` to be of type `str`. Is of type {type(network_name)}')
        self.network_name = network_name

        address_map = dict() if address_map is None else address_map
        if not isinstance(address_map, dict):
            raise TypeError(f'Expected `address_map` to be of type `dict`. Is of type {type(address_map)}')

        self.address_map = dict()
        for socket_type, addresses in address_map.items():
            if not isinstance(socket_type, zmq.SocketType):
                # socket types are serialized into `int`s or `str`s when turned into a dictionary
                socket_type = self.__to_socket_type(socket_type)

            if not isinstance(addresses, list):
                raise TypeError(f'Address Map must be comprised of elements of type {list}. Is of type {type(addresses)}')
            for address in addresses:
                if not isinstance(address, str):
                    raise TypeError(f'{address} in Address Map must be of type {str}. Is of type {type(address)}')

            self.address_map[socket_type] = list(addresses)

    @staticmethod
    def __to_socket_type(value) -> zmq.SocketType:
        try:
            return zmq.SocketType(int(value))
        except (TypeError, ValueError):
            raise TypeError(f'Socket of type {value} in Address Map must be of type {zmq.SocketType}. Is of type {type(value)}')

    def __eq__(self, other) -> bool:
        """
        Compares two instances of a network configuration. Returns True if they represent the same configuration.
        """
        if not isinstance(other, NetworkConfig):
            return False
        return self.to_dict() == other.to_dict()

    def get_addresses(self, socket_type : zmq.SocketType) -> list:
        """
        Returns the addresses assigned to a given type of socket
        """
        return list(self.address_map.get(socket_type, []))

    def to_dict(self) -> dict:
        """
        Creates a dictionary containig all attributes of this object
        """
        return {'network_name' : self.network_name,
                'address_map' : {int(socket_type) : list(addresses)
                                 for socket_type, addresses in self.address_map.items()}}

    def to_json(self) -> str:
        """
        Creates a json serializable string containig all attributes of this object
        """
        return json.dumps(self.to_dict())


def is_address_in_use(address : str) -> bool:
    """
    Checks if an address within `localhost` is already bound to an existing socket.

    ### Arguments:
        - address (`str`): address being evaluated

    ### Returns:
        - `bool`: True if port is already in use
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        port = int(address.split(':')[-1])
        return s.connect_ex(('localhost', port)) == 0


def socket_factory(network_context : azmq.Context, socket_type : zmq.SocketType, addresses : list, queue_depth : int = None) -> tuple:
    """
    Creates a ZMQ socket of a given type and binds it or connects it to a given address.

    ### Attributes:
        - network_context (`azmq.Context`): asynchronous network context to be used
        - socket_type (`zmq.SocketType`): type of socket to be generated
        - addresses (`list`): desired addresses to be bound or connected to the socket being generated
        - queue_depth (`int`): high water mark for outgoing (PUB) or incoming (SUB) messages

    ### Returns:
        - socket (`zmq.Socket`): socket of the desired type and address
        - lock (`asyncio.Lock`): socket lock for asynchronous access

    ### Usage
        socket, lock = socket_factory(context, socket_type, addresses)
    """
    if socket_type not in [zmq.PUB, zmq.SUB, zmq.REQ, zmq.REP]:
        raise NotImplementedError(f'Socket of type {socket_type} not yet supported.')

    socket : zmq.Socket = network_context.socket(socket_type)
    socket.setsockopt(zmq.LINGER, 0)

    # queue limits must be set before connecting
    if queue_depth is not None and socket_type == zmq.PUB:
        socket.sndhwm = queue_depth
    elif queue_depth is not None and socket_type == zmq.SUB:
        socket.rcvhwm = queue_depth

    for address in addresses:
        if '*' not in address:
            socket.connect(address)
        else:
            if is_address_in_use(address):
                socket.close()
                raise ConnectionAbortedError(f'Cannot bind to address {address}. Is currently in use by another process.')
            socket.bind(address)

    return (socket, asyncio.Lock())


"""
------------------
SEND/RECEIVE MESSAGES
------------------
"""
async def send_msg(socket : zmq.Socket, dst : str, msg : TransportMessage) -> None:
    """
    Sends a multipart message through a given socket.

    ### Arguments:
        - socket (`zmq.Socket`): socket used to transmit the message
        - dst (`str`): topic or service name used as the routing frame
        - msg (:obj:`TransportMessage`): message being sent
    """
    await socket.send_multipart([dst.encode('ascii'),
                                 msg.src.encode('ascii'),
                                 msg.to_json().encode('ascii')])

async def receive_msg(socket : zmq.Socket) -> tuple:
    """
    Reads a multipart message from a given socket.

    ### Returns:
        - `tuple` containing the received information:
            topic or service name the message was addressed to as `dst` (`str`)
            name of sender as `src` (`str`)
            and the body of the message as `content` (`dict`)

    ### Usage:
        - dst, src, content = await receive_msg(socket)
    """
    b_dst, b_src, b_content = await socket.recv_multipart()
    dst : str = b_dst.decode('ascii')
    src : str = b_src.decode('ascii')
    content : dict = json.loads(b_content.decode('ascii'))
    return dst, src, content


"""
------------------
TRANSPORT ENDPOINTS
------------------
"""
class Publisher(object):
    """
    ## Topic Publisher

    Publishes messages on a single topic through its handle's shared PUB socket.
    """
    def __init__(self, handle, topic : str, socket : zmq.Socket, lock : asyncio.Lock) -> None:
        self.handle = handle
        self.topic = topic
        self._socket = socket
        self._lock = lock

    async def publish(self, msg : TransportMessage) -> None:
        """
        Publishes `msg` on this publisher's topic. Messages are dropped if no subscriber keeps up.
        """
        async with self._lock:
            self.handle._log(f'publishing on `{self.topic}`: {msg.to_json()}')
            await send_msg(self._socket, self.topic, msg)


class Subscription(object):
    """
    ## Topic Subscription

    Links a topic to the message class used to rebuild incoming samples and the callback they are dispatched to.
    """
    def __init__(self, topic : str, msg_class : type, callback) -> None:
        self.topic = topic
        self.msg_class = msg_class
        self.callback = callback

    async def dispatch(self, content : dict) -> None:
        result = self.callback(self.msg_class(**content))
        if asyncio.iscoroutine(result):
            await result


class ServiceServer(object):
    """
    ## Service Server

    Serves requests addressed to `name` on its handle's shared REP socket.
    The callback receives the request and returns the response message.
    """
    def __init__(self, name : str, request_class : type, callback) -> None:
        self.name = name
        self.request_class = request_class
        self.callback = callback

    async def handle_request(self, content : dict) -> TransportMessage:
        result = self.callback(self.request_class(**content))
        if asyncio.iscoroutine(result):
            result = await result
        return result


class ServiceClient(object):
    """
    ## Service Client

    Issues requests to a remote service through a dedicated REQ socket.

    ### Attributes:
        - name (`str`): name of the remote service
        - response_class (`type`): message class used to rebuild responses
    """
    def __init__(self, handle, name : str, response_class : type) -> None:
        self.handle = handle
        self.name = name
        self.response_class = response_class
        self._socket = None
        self._lock = asyncio.Lock()

    def __get_socket(self) -> zmq.Socket:
        if self._socket is None:
            addresses = self.handle.get_network_config().get_addresses(zmq.REQ)
            if len(addresses) == 0:
                raise RuntimeError(f'Could not find an address for service `{self.name}`.')
            self._socket, _ = socket_factory(self.handle.get_context(), zmq.REQ, addresses)
        return self._socket

    def _reset(self) -> None:
        """
        Discards the current REQ socket. Required after any incomplete request/reply exchange.
        """
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def close(self) -> None:
        self._reset()

    async def __exchange(self, msg : TransportMessage) -> tuple:
        socket = self.__get_socket()
        try:
            await send_msg(socket, self.name, msg)
            return await receive_msg(socket)

        except asyncio.CancelledError:
            self._reset()
            raise

        except Exception as e:
            self.handle._log(f'request to `{self.name}` failed. {e}', level=logging.ERROR)
            self._reset()
            raise e

    async def wait_for_service(self, timeout_sec : float = None) -> bool:
        """
        Checks that the remote service is reachable and registered.

        ### Returns:
            - `bool`: True if the service answered the probe within `timeout_sec` seconds
        """
        async with self._lock:
            loop = asyncio.get_running_loop()
            t_0 = loop.time()
            probe = ServiceProbeMessage(self.handle.name, self.name)
            try:
                _, _, content = await asyncio.wait_for(self.__exchange(probe), timeout_sec)
            except asyncio.TimeoutError:
                self.handle._log(f'service `{self.name}` did not answer within {timeout_sec}[s].')
                return False

            if content['msg_type'] == TransportMessageTypes.SERVICE_AVAILABLE.value:
                return True

            # endpoint is up but does not serve this name yet
            self.handle._log(f'service `{self.name}` not registered at endpoint. {content.get("error")}')
            if timeout_sec is not None:
                await asyncio.sleep(max(0.0, timeout_sec - (loop.time() - t_0)))
            return False

    async def call(self, request : TransportMessage) -> TransportMessage:
        """
        Sends `request` and waits for its response. Raises a `RuntimeError` if the service reports a failure.
        """
        async with self._lock:
            self.handle._log(f'calling service `{self.name}` with {request.to_json()}...')
            _, _, content = await self.__exchange(request)

        if content['msg_type'] == TransportMessageTypes.SERVICE_ERROR.value:
            raise RuntimeError(f'service `{self.name}` failed: {content.get("error")}')

        self.handle._log(f'service `{self.name}` responded with {content}')
        resp = message_from_dict(**content)
        if not isinstance(resp, self.response_class):
            raise RuntimeError(f'service `{self.name}` responded with `{resp.msg_type}`. expected `{self.response_class.__name__}`')
        return resp

    def call_async(self, request : TransportMessage) -> asyncio.Task:
        """
        Schedules `call(request)` and returns the pending task
        """
        return asyncio.create_task(self.call(request))
