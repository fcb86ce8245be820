class BrokerError(Exception):
    pass


class BrokerConnectionError(BrokerError):
    pass


class BrokerNotConnectedError(BrokerError):
    pass


class BrokerCloseError(BrokerError):
    pass


class QueueDeclareError(BrokerError):
    pass


class QueueNotDeclaredError(BrokerError):
    pass


class PublishError(BrokerError):
    pass


class PublishTimeoutError(PublishError):
    pass


class ConsumeError(BrokerError):
    pass
