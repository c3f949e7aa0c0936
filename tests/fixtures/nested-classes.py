class One:
    x = 1

    class Two:
        class Nine:
            value = 9

        def method(self):
            return 2

class Three:
    pass
